"""Quality gate for incoming raw candidates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from citypulse.models import RawCandidate
from citypulse.utils.geo import valid_coordinates
from citypulse.utils.text import is_link_only, normalize_whitespace


SPAM_TERMS = {
    "test",
    "asdf",
    "asdfasdf",
    "qwerty",
    "1234",
}


@dataclass(frozen=True)
class AcceptDecision:
    candidate: RawCandidate
    review_reason: Optional[str] = None


@dataclass(frozen=True)
class RejectDecision:
    candidate: RawCandidate
    reason: str


@dataclass
class GateResult:
    accepted: list[RawCandidate] = field(default_factory=list)
    rejected: list[RejectDecision] = field(default_factory=list)
    reviewed: list[AcceptDecision] = field(default_factory=list)


class CandidateGate:
    """Drop candidates with nothing usable in them and repair bad coordinates."""

    def __init__(self, link_only_min_chars: int = 3) -> None:
        self.link_only_min_chars = link_only_min_chars

    def evaluate(self, candidate: RawCandidate) -> AcceptDecision | RejectDecision:
        text = normalize_whitespace(candidate.full_text)
        if not text:
            return RejectDecision(candidate=candidate, reason="missing_text")

        if is_link_only(text, self.link_only_min_chars):
            return RejectDecision(candidate=candidate, reason="link_only")

        if text.lower() in SPAM_TERMS:
            return RejectDecision(candidate=candidate, reason="spam_text")

        has_any_coordinate = candidate.latitude is not None or candidate.longitude is not None
        if has_any_coordinate and not valid_coordinates(candidate.latitude, candidate.longitude):
            repaired = candidate.model_copy(update={"latitude": None, "longitude": None})
            return AcceptDecision(candidate=repaired, review_reason="invalid_coords")

        return AcceptDecision(candidate=candidate)

    def split(self, candidates: Iterable[RawCandidate]) -> GateResult:
        result = GateResult()
        for candidate in candidates:
            decision = self.evaluate(candidate)
            if isinstance(decision, RejectDecision):
                result.rejected.append(decision)
                continue
            result.accepted.append(decision.candidate)
            if decision.review_reason:
                result.reviewed.append(decision)
        return result
