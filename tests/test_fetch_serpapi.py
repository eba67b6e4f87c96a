import httpx
import pytest

from citypulse.config import Settings
from citypulse.errors import FetchError
from citypulse.ingestion.fetch_serpapi import SerpApiFetcher, detect_area
from citypulse.models import EventCategory, EventSource, SourceLocation


NO_RESULTS = {"error": "Google hasn't returned any results for this query."}


def _settings(**overrides):
    values = {"SERPAPI_API_KEY": "test-key", "SERPAPI_MAX_RETRIES": 0}
    values.update(overrides)
    return Settings(**values)


def _location():
    return SourceLocation(id="loc-1", area="Koramangala", latitude=12.935, longitude=77.624)


def _fetcher(handler, **overrides):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SerpApiFetcher(_settings(**overrides), client=client), client


def test_news_results_become_candidates():
    seen = []

    def handler(request):
        params = request.url.params
        seen.append(dict(params))
        if params["q"].startswith("traffic jam Bengaluru today"):
            return httpx.Response(
                200,
                json={
                    "news_results": [
                        {
                            "title": "Traffic jam near Sony World junction in Koramangala",
                            "snippet": "Commuters stuck for an hour",
                            "link": "https://news.example/jam",
                        },
                        {
                            "title": "Cricket team announces squad",
                            "snippet": "Selectors meet today",
                            "link": "https://news.example/cricket",
                        },
                    ]
                },
            )
        if params["q"].startswith("road block Bangalore"):
            return httpx.Response(
                200,
                json={
                    "news_results": [
                        {
                            "title": "Traffic jam near Sony World junction in Koramangala",
                            "link": "https://news.example/jam",
                        }
                    ]
                },
            )
        return httpx.Response(200, json=NO_RESULTS)

    fetcher, client = _fetcher(handler)
    candidates = fetcher.fetch(_location(), [EventCategory.TRAFFIC])
    client.close()

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.source_tag == EventSource.SERP
    assert candidate.category_hint == EventCategory.TRAFFIC
    assert candidate.source_url == "https://news.example/jam"
    assert candidate.area == "Koramangala"
    assert candidate.text == "Commuters stuck for an hour"
    assert not candidate.is_user_submitted

    first = seen[0]
    assert first["engine"] == "google"
    assert first["tbm"] == "nws"
    assert first["tbs"] == "qdr:d"
    assert first["api_key"] == "test-key"
    assert first["location"] == "Koramangala, Bengaluru, Karnataka, India"
    assert first["q"] == "traffic jam Bengaluru today Koramangala, Bengaluru, Karnataka, India"


def test_emergency_queries_use_hourly_window():
    seen = []

    def handler(request):
        seen.append(request.url.params["tbs"])
        return httpx.Response(200, json=NO_RESULTS)

    fetcher, client = _fetcher(handler)
    assert fetcher.fetch(_location(), [EventCategory.EMERGENCY]) == []
    client.close()

    assert seen
    assert set(seen) == {"qdr:h"}


def test_unsupported_categories_are_skipped():
    def handler(request):
        raise AssertionError("no request expected")

    fetcher, client = _fetcher(handler)
    assert fetcher.fetch(_location(), [EventCategory.CULTURAL_EVENT]) == []
    client.close()


def test_api_error_raises_fetch_error():
    def handler(request):
        return httpx.Response(401, json={"error": "Invalid API key."})

    fetcher, client = _fetcher(handler)
    with pytest.raises(FetchError):
        fetcher.fetch(_location(), [EventCategory.TRAFFIC])
    client.close()


def test_server_error_without_retries_raises_fetch_error():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    fetcher, client = _fetcher(handler)
    with pytest.raises(FetchError):
        fetcher.fetch(_location(), [EventCategory.TRAFFIC])
    client.close()


def test_missing_api_key_is_rejected():
    with pytest.raises(ValueError):
        SerpApiFetcher(Settings(SERPAPI_API_KEY=""))


def test_detect_area():
    assert detect_area("Waterlogging in HSR Layout sector 2") == "Hsr Layout"
    assert detect_area("Rain lashes the city") is None
