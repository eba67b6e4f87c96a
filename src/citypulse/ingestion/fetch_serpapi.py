"""SerpApi Google News fetcher."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from citypulse.config import Settings
from citypulse.errors import FetchError
from citypulse.models import EventCategory, EventSource, RawCandidate, SourceLocation
from citypulse.utils.hashing import hash_text
from citypulse.utils.logging import get_logger
from citypulse.utils.time import parse_datetime


logger = get_logger(__name__)

NO_RESULTS_MARKER = "hasn't returned any results"

KNOWN_AREAS: tuple[str, ...] = (
    "koramangala", "indiranagar", "whitefield", "electronic city", "btm layout",
    "jayanagar", "malleshwaram", "rajajinagar", "banashankari", "basavanagudi",
    "hsr layout", "sarjapur", "bellandur", "marathahalli", "hebbal", "yemalur",
    "kr puram", "bommanahalli", "jp nagar", "vijayanagar", "mg road", "brigade road",
    "commercial street", "chickpet", "shivajinagar", "majestic", "cantonment",
)


@dataclass(frozen=True)
class QuerySet:
    """Search queries for one category and the words a hit must contain."""

    category: EventCategory
    queries: tuple[str, ...]
    relevance_terms: tuple[str, ...]
    time_filter: str = "qdr:d"


QUERY_SETS: dict[EventCategory, QuerySet] = {
    EventCategory.TRAFFIC: QuerySet(
        category=EventCategory.TRAFFIC,
        queries=(
            "traffic jam Bengaluru today",
            "road block Bangalore",
            "traffic alert Bengaluru",
            "road closure Bangalore",
            "accident Outer Ring Road",
            "traffic signal issue Bengaluru",
        ),
        relevance_terms=(
            "traffic", "road", "vehicle", "accident", "jam", "block", "closure",
            "congestion", "signal", "junction", "highway", "flyover", "underpass",
        ),
    ),
    EventCategory.EMERGENCY: QuerySet(
        category=EventCategory.EMERGENCY,
        queries=(
            "emergency alert Bengaluru today",
            "fire emergency Bangalore",
            "ambulance emergency Bangalore",
            "building collapse Bangalore",
            "gas leak emergency Bengaluru",
            "flood emergency Bengaluru",
        ),
        relevance_terms=(
            "emergency", "urgent", "alert", "fire", "police", "ambulance", "bomb",
            "explosion", "disaster", "evacuation", "rescue", "collapse", "flood",
            "gas leak", "accident",
        ),
        time_filter="qdr:h",
    ),
    EventCategory.CIVIC_ISSUE: QuerySet(
        category=EventCategory.CIVIC_ISSUE,
        queries=(
            "pothole complaint Bengaluru",
            "garbage problem Bangalore",
            "water supply disruption Bengaluru",
        ),
        relevance_terms=(
            "pothole", "garbage", "water", "drain", "sewage", "streetlight", "bbmp",
        ),
    ),
    EventCategory.PUBLIC_TRANSPORT: QuerySet(
        category=EventCategory.PUBLIC_TRANSPORT,
        queries=(
            "Metro closure Bangalore",
            "traffic update Bengaluru BMTC",
        ),
        relevance_terms=("metro", "bus", "bmtc", "namma metro", "station"),
    ),
}


def supported_categories() -> tuple[EventCategory, ...]:
    return tuple(QUERY_SETS)


class NewsResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    link: Optional[str] = None
    snippet: Optional[str] = None
    source: Any = None
    date: Optional[str] = None


class SerpApiResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    news_results: list[NewsResult] = Field(default_factory=list)
    error: Any = None

    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error)
        return str(self.error)


class CandidateFetcher(Protocol):
    """Source of raw candidates for one polling target."""

    def fetch(
        self,
        location: SourceLocation,
        categories: Iterable[EventCategory],
    ) -> list[RawCandidate]:
        """Return candidates; raise ``FetchError`` when the source is unreachable."""


def detect_area(text: str) -> Optional[str]:
    lowered = text.lower()
    for area in KNOWN_AREAS:
        if re.search(rf"\b{re.escape(area)}\b", lowered):
            return area.title()
    return None


def is_relevant(text: str, query_set: QuerySet) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in query_set.relevance_terms)


def _to_candidate(
    result: NewsResult,
    query_set: QuerySet,
    location: SourceLocation,
) -> Optional[RawCandidate]:
    title = (result.title or "").strip()
    snippet = (result.snippet or "").strip()
    combined = f"{title} {snippet}"
    if not title or not is_relevant(combined, query_set):
        return None

    return RawCandidate(
        id=f"serp_{hash_text(result.link or title)}",
        title=title,
        text=snippet or title,
        area=detect_area(combined) or location.area,
        address=location.formatted_location(),
        category_hint=query_set.category,
        source_tag=EventSource.SERP,
        source_url=result.link,
        observed_at=parse_datetime(result.date) if result.date else None,
    )


class SerpApiFetcher:
    """Run each category's queries for a location and keep relevant news hits."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings or Settings()
        if not self.settings.serpapi_api_key:
            raise ValueError("SERPAPI_API_KEY must be set for SerpApi fetching")
        self._client = client

    def _params(self, query: str, location: str, query_set: QuerySet) -> dict[str, str | int]:
        return {
            "engine": "google",
            "q": f"{query} {location}",
            "location": location,
            "hl": self.settings.serpapi_language,
            "gl": self.settings.serpapi_country,
            "google_domain": self.settings.serpapi_google_domain,
            "num": self.settings.serpapi_max_results,
            "tbm": "nws",
            "tbs": query_set.time_filter,
            "api_key": self.settings.serpapi_api_key or "",
        }

    def fetch(
        self,
        location: SourceLocation,
        categories: Iterable[EventCategory],
    ) -> list[RawCandidate]:
        query_sets = [QUERY_SETS[category] for category in categories if category in QUERY_SETS]
        search_location = location.formatted_location()
        logger.info(
            "serpapi.fetch.start location=%s categories=%s",
            location.short_name(),
            [query_set.category.value for query_set in query_sets],
        )

        candidates: dict[str, RawCandidate] = {}
        client = self._client or httpx.Client(timeout=self.settings.serpapi_timeout_seconds)
        try:
            for query_set in query_sets:
                for query in query_set.queries:
                    response = self._search(client, query, search_location, query_set)
                    for result in response.news_results:
                        candidate = _to_candidate(result, query_set, location)
                        if candidate is not None:
                            candidates.setdefault(candidate.id, candidate)
        finally:
            if self._client is None:
                client.close()

        logger.info(
            "serpapi.fetch.complete location=%s count=%s", location.short_name(), len(candidates)
        )
        return list(candidates.values())

    def _search(
        self,
        client: httpx.Client,
        query: str,
        location: str,
        query_set: QuerySet,
    ) -> SerpApiResponse:
        try:
            response = _get_with_retry(
                client,
                self.settings.serpapi_base_url,
                params=self._params(query, location, query_set),
                retries=self.settings.serpapi_max_retries,
            )
            payload = SerpApiResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            raise FetchError(f"SerpApi query failed: {query!r}: {exc}") from exc

        message = payload.error_message()
        if message and NO_RESULTS_MARKER in message:
            logger.debug("serpapi.no_results query=%s", query)
            return SerpApiResponse()

        if response.status_code >= 400:
            raise FetchError(
                f"SerpApi returned HTTP {response.status_code} for {query!r}: {message}"
            )
        if message:
            logger.warning("serpapi.error query=%s error=%s", query, message)
            return SerpApiResponse()
        return payload


def _get_with_retry(
    client: httpx.Client,
    url: str,
    params: Optional[dict] = None,
    retries: int = 3,
) -> httpx.Response:
    """GET with simple retry and backoff."""
    attempt = 0
    while True:
        try:
            response = client.get(url, params=params)
            if response.status_code >= 500 and attempt < retries:
                attempt += 1
                time.sleep(min(2**attempt, 8))
                continue
            return response
        except httpx.RequestError:
            attempt += 1
            if attempt > retries:
                raise
            time.sleep(min(2**attempt, 8))
