# src/waypoint/clients/http.py
"""HTTP collaborators: work unit analysis and summary generation.

Both talk JSON over httpx to a provider configured by ProviderSettings.
Failure classification for unit calls:

- timeouts, connection errors, 429 and 5xx raise a retryable UnitProcessingError
- other 4xx, non-JSON bodies, and malformed payloads raise a non-retryable one

The engine's RetryManager decides whether to try again.
"""

import json
import math
from collections.abc import Mapping
from json import JSONDecodeError
from typing import Any

import httpx

from waypoint.contracts.errors import PipelineError, UnitProcessingError
from waypoint.contracts.work import UnitResult, WorkUnit, WorkUnitProcessor
from waypoint.core.config import ProcessorSettings, ProviderSettings
from waypoint.core.logging import get_logger

logger = get_logger(__name__)


def _contains_non_finite(obj: Any) -> bool:
    """Recursively check if a parsed JSON value contains NaN or Infinity."""
    if isinstance(obj, float):
        return math.isnan(obj) or math.isinf(obj)
    if isinstance(obj, dict):
        return any(_contains_non_finite(v) for v in obj.values())
    if isinstance(obj, list):
        return any(_contains_non_finite(v) for v in obj)
    return False


def _parse_json_object(text: str) -> tuple[dict[str, Any] | None, str | None]:
    """Parse a JSON object, rejecting non-finite numbers.

    Returns:
        (parsed, None) on success, (None, error_message) on failure
    """
    try:
        parsed = json.loads(text)
    except JSONDecodeError as e:
        return None, str(e)
    if not isinstance(parsed, dict):
        return None, f"expected a JSON object, got {type(parsed).__name__}"
    if _contains_non_finite(parsed):
        return None, "JSON contains non-finite values (NaN or Infinity)"
    return parsed, None


def _make_client(settings: ProviderSettings) -> httpx.Client:
    headers = {"Content-Type": "application/json"}
    if settings.api_key:
        headers["Authorization"] = f"Bearer {settings.api_key}"
    return httpx.Client(base_url=settings.base_url, headers=headers, timeout=settings.timeout_seconds)


class HttpWorkUnitProcessor:
    """Analyzes one work unit per ``POST /analyze`` call.

    Request body: ``{"model", "unit": {...}, "context": {...}}``.
    Response body: ``{"analysis": {...}}``.

    Example:
        processor = HttpWorkUnitProcessor(ProviderSettings(name="primary", base_url="https://analysis.internal/v1"))
        result = processor.process(unit, context)
    """

    def __init__(self, settings: ProviderSettings, *, client: httpx.Client | None = None) -> None:
        self.name = settings.name
        self._model = settings.model
        # httpx.Client is thread-safe; one pool serves every runner thread
        self._client = client if client is not None else _make_client(settings)

    def process(self, unit: WorkUnit, context: Mapping[str, Any]) -> UnitResult:
        body = {
            "model": self._model,
            "unit": {
                "unitId": unit.unit_id,
                "ownerId": unit.owner_id,
                "unitDate": unit.unit_date.isoformat(),
                "label": unit.label,
                "content": dict(unit.content),
            },
            "context": dict(context),
        }
        try:
            response = self._client.post("/analyze", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 429:
                raise UnitProcessingError(unit.unit_id, f"{self.name}: rate limited", retryable=True) from e
            if status_code >= 500:
                raise UnitProcessingError(
                    unit.unit_id, f"{self.name}: server error ({status_code})", retryable=True
                ) from e
            raise UnitProcessingError(unit.unit_id, f"{self.name}: request rejected ({status_code})") from e
        except httpx.TimeoutException as e:
            raise UnitProcessingError(unit.unit_id, f"{self.name}: timed out", retryable=True) from e
        except httpx.RequestError as e:
            raise UnitProcessingError(unit.unit_id, f"{self.name}: network error: {e}", retryable=True) from e

        data, error = _parse_json_object(response.text)
        if data is None:
            raise UnitProcessingError(unit.unit_id, f"{self.name}: invalid JSON response: {error}")
        analysis = data.get("analysis")
        if not isinstance(analysis, dict):
            raise UnitProcessingError(unit.unit_id, f"{self.name}: response has no analysis object")
        return UnitResult(unit_id=unit.unit_id, analysis=analysis, provider=self.name)

    def close(self) -> None:
        self._client.close()


class FallbackWorkUnitProcessor:
    """Tries the primary processor, then the fallback on any unit failure.

    The retry manager wraps the pair, so one attempt means primary then
    fallback. If both fail, the fallback's error is raised, retryable when
    either failure was.
    """

    def __init__(self, primary: WorkUnitProcessor, fallback: WorkUnitProcessor) -> None:
        self.name = f"{primary.name}+{fallback.name}"
        self._primary = primary
        self._fallback = fallback

    def process(self, unit: WorkUnit, context: Mapping[str, Any]) -> UnitResult:
        try:
            return self._primary.process(unit, context)
        except UnitProcessingError as primary_error:
            logger.warning(
                "primary_processor_failed",
                unit_id=unit.unit_id,
                provider=self._primary.name,
                error=primary_error.cause,
            )
            try:
                return self._fallback.process(unit, context)
            except UnitProcessingError as fallback_error:
                raise UnitProcessingError(
                    unit.unit_id,
                    f"{primary_error.cause}; {fallback_error.cause}",
                    retryable=primary_error.retryable or fallback_error.retryable,
                ) from fallback_error


class HttpSummarizer:
    """Generates the aggregate with one ``POST /summarize`` call.

    Request body: ``{"model", "input": {...}}``. Response body: ``{"summary": {...}}``.
    Any failure is a PipelineError: the generate step fails and the task
    can be retried from its checkpoint.
    """

    def __init__(self, settings: ProviderSettings, *, client: httpx.Client | None = None) -> None:
        self.name = settings.name
        self._model = settings.model
        self._client = client if client is not None else _make_client(settings)

    def summarize(self, prepared: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post("/summarize", json={"model": self._model, "input": dict(prepared)})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PipelineError(f"{self.name}: summary request failed ({e.response.status_code})") from e
        except httpx.RequestError as e:
            raise PipelineError(f"{self.name}: summary request failed: {e}") from e

        data, error = _parse_json_object(response.text)
        if data is None:
            raise PipelineError(f"{self.name}: invalid JSON response: {error}")
        summary = data.get("summary")
        if not isinstance(summary, dict):
            raise PipelineError(f"{self.name}: response has no summary object")
        return summary

    def close(self) -> None:
        self._client.close()


def build_processor(settings: ProcessorSettings) -> WorkUnitProcessor:
    """Primary processor, wrapped with the fallback when one is configured."""
    primary = HttpWorkUnitProcessor(settings.primary)
    if settings.fallback is None:
        return primary
    return FallbackWorkUnitProcessor(primary, HttpWorkUnitProcessor(settings.fallback))


def build_summarizer(settings: ProviderSettings) -> HttpSummarizer:
    return HttpSummarizer(settings)
