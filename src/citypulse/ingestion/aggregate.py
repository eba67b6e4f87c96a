"""Build one canonical record per group."""

from __future__ import annotations

from datetime import datetime
from statistics import mean
from typing import Callable

from citypulse.enrichment.fallback import (
    PARTIAL_FALLBACK_CONFIDENCE,
    extract_title,
    format_single_event,
)
from citypulse.enrichment.gateway import EnrichmentGateway
from citypulse.grouping import CanonicalGroup
from citypulse.models import CanonicalEvent, LocationContext, max_severity
from citypulse.utils.hashing import hash_ids
from citypulse.utils.text import merge_keywords
from citypulse.utils.time import utc_now


def synthesis_context(group: CanonicalGroup, context: LocationContext) -> str:
    parts = [f"Synthesizing events for group: {group.key}."]
    if context.area:
        parts.append(f"Focus area: {context.area}.")
    parts.append(f"Provide actionable information for {context.city or 'city'} residents.")
    return " ".join(parts)


class Aggregator:
    """Singletons are formatted as-is; larger groups get one synthesis call."""

    def __init__(
        self,
        gateway: EnrichmentGateway,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.gateway = gateway
        self._clock = clock

    def build(self, group: CanonicalGroup, context: LocationContext) -> CanonicalEvent:
        if group.is_singleton:
            event = group.members[0]
            return event.model_copy(
                update={
                    "ai_summary": event.ai_summary or format_single_event(event),
                    "metadata": {**event.metadata, "group_key": group.key},
                }
            )
        return self._merge(group, context)

    def _merge(self, group: CanonicalGroup, context: LocationContext) -> CanonicalEvent:
        members = group.members
        lead = members[0]
        synthesis = self.gateway.synthesize(members, synthesis_context(group, context))
        summary = synthesis.unwrap()

        if synthesis.degraded:
            confidence = PARTIAL_FALLBACK_CONFIDENCE
        else:
            confidence = round(mean(member.confidence_score for member in members), 3)

        location = next((member.location for member in members if member.location), None)
        sentiment = next((member.sentiment for member in members if member.sentiment), None)
        media = [attachment for member in members for attachment in member.media]

        return CanonicalEvent.create(
            lead.category,
            created_at=self._clock(),
            id=f"agg_{hash_ids(group.member_ids)}",
            title=extract_title(summary, f"Multiple {lead.category.value} reports"),
            description=summary,
            content="; ".join(member.content for member in members if member.content),
            location=location,
            severity=max_severity(member.severity for member in members),
            source=lead.source,
            sentiment=sentiment,
            keywords=merge_keywords(member.keywords for member in members),
            ai_summary=summary,
            confidence_score=confidence,
            media=media,
            metadata={
                "contributing_ids": group.member_ids,
                "aggregated_event_count": len(members),
                "aggregation_method": (
                    "template_fallback" if synthesis.degraded else "ai_synthesis"
                ),
                "enrichment_degraded": synthesis.degraded,
                "group_key": group.key,
            },
        )
