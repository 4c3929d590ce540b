"""OpenAI Responses API client for vision extraction."""

import json
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from nutrivision.domain.errors import AnalyzerError, FailureReason
from nutrivision.services.vision import VisionClient

_OVERLOADED_STATUS = 503


@dataclass
class OpenAIVisionClient(VisionClient):
    """Vision client backed by OpenAI Responses API."""

    client: AsyncOpenAI | None

    @classmethod
    def create(cls, api_key: str | None) -> "OpenAIVisionClient":
        """Create an OpenAI vision client; without a key every call fails."""
        if not api_key:
            return cls(client=None)
        return cls(client=AsyncOpenAI(api_key=api_key))

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
        """Call OpenAI Responses API with structured outputs."""
        if self.client is None:
            raise AnalyzerError(FailureReason.MISSING_API_KEY, "OpenAI API key missing")
        content: list[dict[str, object]] = [{"type": "input_text", "text": prompt}]
        if image_data_url is not None:
            content.append({"type": "input_image", "image_url": image_data_url})
        request_payload: dict[str, object] = {
            "model": model,
            "input": [{"role": "user", "content": content}],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "food_items",
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        try:
            response = await self.client.responses.create(**request_payload)
        except openai.OpenAIError as exc:
            raise _translate(exc) from exc
        output_text = response.output_text
        if not output_text:
            raise AnalyzerError(
                FailureReason.INVALID_RESPONSE, "OpenAI returned an empty response"
            )
        try:
            return json.loads(output_text)
        except json.JSONDecodeError as exc:
            raise AnalyzerError(FailureReason.INVALID_RESPONSE, str(exc)) from exc

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


def _translate(exc: openai.OpenAIError) -> AnalyzerError:
    """Map SDK errors onto stable failure reasons."""
    if isinstance(exc, openai.APITimeoutError):
        reason = FailureReason.TIMEOUT
    elif isinstance(exc, openai.AuthenticationError):
        reason = FailureReason.INVALID_API_KEY
    elif isinstance(exc, openai.RateLimitError):
        reason = FailureReason.RATE_LIMITED
    elif isinstance(exc, openai.InternalServerError | openai.APIConnectionError):
        reason = FailureReason.UNAVAILABLE
    elif (
        isinstance(exc, openai.APIStatusError)
        and exc.status_code == _OVERLOADED_STATUS
    ):
        reason = FailureReason.UNAVAILABLE
    else:
        reason = FailureReason.ANALYZER_ERROR
    return AnalyzerError(reason, str(exc))
