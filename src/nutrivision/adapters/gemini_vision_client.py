"""Gemini generateContent client for vision extraction."""

import json
from dataclasses import dataclass

import httpx

from nutrivision.domain.errors import AnalyzerError, FailureReason
from nutrivision.services.vision import VisionClient

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

_STATUS_REASONS = {
    401: FailureReason.INVALID_API_KEY,
    403: FailureReason.INVALID_API_KEY,
    429: FailureReason.RATE_LIMITED,
    500: FailureReason.UNAVAILABLE,
    503: FailureReason.UNAVAILABLE,
}


@dataclass
class GeminiVisionClient(VisionClient):
    """HTTPX-backed Gemini client using JSON-schema constrained output."""

    api_key: str | None
    http_client: httpx.AsyncClient
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = 60.0

    @classmethod
    def create(
        cls, api_key: str | None, api_base: str = DEFAULT_API_BASE
    ) -> "GeminiVisionClient":
        """Create a Gemini client with its own httpx session."""
        return cls(
            api_key=api_key,
            http_client=httpx.AsyncClient(),
            api_base=api_base.rstrip("/"),
        )

    async def extract(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        image_data_url: str | None,
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        """Call generateContent; reasoning_effort and store are not used."""
        if not self.api_key:
            raise AnalyzerError(FailureReason.MISSING_API_KEY, "Gemini API key missing")
        parts: list[dict[str, object]] = [{"text": prompt}]
        if image_data_url is not None:
            mime_type, data = _split_data_url(image_data_url)
            parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseJsonSchema": schema,
            },
        }
        try:
            response = await self.http_client.post(
                f"{self.api_base}/models/{model}:generateContent",
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise AnalyzerError(FailureReason.TIMEOUT, str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            reason = _STATUS_REASONS.get(
                exc.response.status_code, FailureReason.ANALYZER_ERROR
            )
            raise AnalyzerError(reason, str(exc)) from exc
        except httpx.TransportError as exc:
            raise AnalyzerError(FailureReason.UNAVAILABLE, str(exc)) from exc

        text = _extract_text(response.json())
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise AnalyzerError(FailureReason.INVALID_RESPONSE, str(exc)) from exc

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _split_data_url(data_url: str) -> tuple[str, str]:
    header, _, data = data_url.partition(",")
    mime_type = header.removeprefix("data:").split(";")[0] or "image/jpeg"
    return mime_type, data


def _extract_text(payload: dict[str, object]) -> str:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise AnalyzerError(
            FailureReason.INVALID_RESPONSE, "Gemini returned no candidates"
        )
    parts = (candidates[0].get("content") or {}).get("parts") or []
    texts = [
        str(part["text"])
        for part in parts
        if isinstance(part, dict) and "text" in part
    ]
    if not texts:
        raise AnalyzerError(FailureReason.INVALID_RESPONSE, "Gemini returned no text")
    return "".join(texts).strip()
