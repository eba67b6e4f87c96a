"""Gemini REST client and the enrichment collaborator built on it."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence, TypeVar

import httpx
import orjson
from pydantic import BaseModel, ValidationError

from citypulse.config import Settings
from citypulse.enrichment.prompt_loader import load_prompt
from citypulse.enrichment.schemas import (
    CategorizeOutput,
    SentimentOutput,
    SeverityOutput,
    SynthesisOutput,
)
from citypulse.errors import EnrichmentError
from citypulse.models import CanonicalEvent, EventCategory, EventSeverity
from citypulse.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


REPAIR_SUFFIX = (
    "\n\nIMPORTANT: Return ONLY a single JSON object. No markdown. No code fences. "
    "Do not add any extra keys. Ensure types and allowed values match the schema."
)


def _extract_text_from_response(payload: dict[str, Any]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ValueError("Gemini response missing candidates")

    content = (candidates[0].get("content") or {})
    parts = content.get("parts") or []
    texts: list[str] = []
    for part in parts:
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            texts.append(text)
    if not texts:
        raise ValueError("Gemini response missing text parts")
    return "\n".join(texts).strip()


def _strip_code_fences(text: str) -> str:
    value = text.strip()
    if value.startswith("```"):
        lines = value.splitlines()
        if lines and lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].startswith("```"):
            lines = lines[:-1]
        value = "\n".join(lines).strip()
    return value


def extract_json_string(text: str) -> str:
    """Pull a JSON object out of model output that may carry fences or prose."""
    candidate = _strip_code_fences(text)
    try:
        orjson.loads(candidate)
        return candidate
    except orjson.JSONDecodeError:
        pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start >= 0 and end > start:
        maybe = candidate[start : end + 1].strip()
        orjson.loads(maybe)
        return maybe

    raise ValueError("Could not extract valid JSON from model output")


@dataclass(frozen=True)
class GeminiResult:
    text: str
    latency_ms: int


class GeminiClient:
    """Minimal REST client for Gemini generateContent."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        if not self.settings.google_api_key:
            raise ValueError("GOOGLE_API_KEY must be set for Gemini enrichment")

    def _request(self, prompt: str) -> GeminiResult:
        url = (
            f"{self.settings.gemini_api_base_url}/models/"
            f"{self.settings.gemini_model_id}:generateContent"
        )
        params = {"key": self.settings.google_api_key}
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.settings.gemini_temperature,
                "maxOutputTokens": self.settings.gemini_max_output_tokens,
                "responseMimeType": "application/json",
            },
        }

        start = time.time()
        with httpx.Client(timeout=self.settings.enrichment_timeout_seconds) as client:
            response = client.post(url, params=params, json=body)
            response.raise_for_status()
            payload = response.json()

        latency_ms = int((time.time() - start) * 1000)
        text = _extract_text_from_response(payload)
        return GeminiResult(text=text, latency_ms=latency_ms)

    def generate_structured(self, prompt: str, schema: type[T]) -> tuple[Optional[T], int, int, str | None]:
        """Generate and validate structured JSON output.

        Returns (output, total_latency_ms, attempts, error_message).
        """
        total_latency = 0
        last_error: str | None = None
        attempts = max(1, self.settings.gemini_max_retries)

        for attempt in range(1, attempts + 1):
            suffix = "" if attempt == 1 else REPAIR_SUFFIX
            try:
                result = self._request(prompt + suffix)
                total_latency += result.latency_ms
                json_str = extract_json_string(result.text)
                parsed = schema.model_validate_json(json_str)
                return parsed, total_latency, attempt, None
            except (httpx.HTTPError, ValidationError, ValueError) as exc:
                last_error = str(exc)
                if attempt < attempts:
                    time.sleep(self.settings.gemini_retry_sleep_seconds)
                continue

        return None, total_latency, attempts, last_error


def _describe_member(event: CanonicalEvent) -> str:
    area = event.area or "unknown area"
    return f"- [{event.severity.value}] {event.title} ({area}): {event.description}"


class GeminiEnrichmentClient:
    """Enrichment collaborator backed by Gemini structured output.

    Every method raises ``EnrichmentError`` when the model gives no valid
    answer; the gateway turns that into a fallback.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[GeminiClient] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.client = client or GeminiClient(self.settings)
        self._prompts: dict[str, str] = {}

    def _prompt(self, task: str) -> str:
        if task not in self._prompts:
            self._prompts[task] = load_prompt(task, self.settings.enrichment_prompt_version)
        return self._prompts[task]

    def _generate(self, task: str, llm_input: str, schema: type[T]) -> T:
        full_prompt = f"{self._prompt(task)}\n\nINPUT:\n{llm_input}\n"
        output, latency_ms, attempts, error = self.client.generate_structured(full_prompt, schema)
        if output is None:
            raise EnrichmentError(f"{task} failed after {attempts} attempts: {error}")
        logger.debug("gemini.%s.ok attempts=%s latency_ms=%s", task, attempts, latency_ms)
        return output

    def synthesize(self, members: Sequence[CanonicalEvent], context: str) -> str:
        lines = [f"CONTEXT: {context}", "REPORTS:"]
        lines.extend(_describe_member(event) for event in members)
        output = self._generate("synthesize", "\n".join(lines), SynthesisOutput)
        return output.summary

    def categorize(self, text: str, source_tag: str) -> CategorizeOutput:
        llm_input = f"SOURCE: {source_tag}\nREPORT:\n{text}"
        return self._generate("categorize", llm_input, CategorizeOutput)

    def analyze_sentiment(self, text: str) -> SentimentOutput:
        return self._generate("sentiment", text, SentimentOutput)

    def predict_severity(
        self,
        text: str,
        category: EventCategory,
        location_hint: Optional[str],
    ) -> EventSeverity:
        llm_input = (
            f"CATEGORY: {category.value}\n"
            f"LOCATION: {location_hint or 'unknown'}\n"
            f"REPORT:\n{text}"
        )
        return self._generate("severity", llm_input, SeverityOutput).severity
