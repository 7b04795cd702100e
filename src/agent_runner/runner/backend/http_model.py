"""OpenAI-compatible chat-completions adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from agent_runner.runner.backend.base import ModelFailureKind, ModelInvocationError, ModelRequest
from agent_runner.runner.contracts import DecisionParseError, ModelDecision, parse_model_decision

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


class HttpReasoningModel:
    """Call a chat-completions endpoint in JSON mode; no retries."""

    def __init__(
        self,
        *,
        url: str,
        model: str,
        api_key: str | None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.model = model
        self._api_key = api_key
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def invoke(self, request: ModelRequest) -> ModelDecision:
        if not self._api_key:
            raise ModelInvocationError(
                "Model API key is not configured",
                kind=ModelFailureKind.CONFIGURATION,
            )

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {
                    "role": "user",
                    "content": json.dumps(request.user_message(), ensure_ascii=False),
                },
            ],
            "response_format": {"type": "json_object"},
        }
        try:
            response = self._client.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TimeoutException as error:
            logger.warning("Model call timed out: url=%s model=%s", self.url, self.model)
            raise ModelInvocationError(
                f"LLM call timed out: {error}",
                kind=ModelFailureKind.TIMEOUT,
            ) from error
        except httpx.HTTPError as error:
            logger.warning("Model call transport error: %s", error)
            raise ModelInvocationError(
                f"LLM call failed: {error}",
                kind=ModelFailureKind.TRANSPORT,
            ) from error

        if not response.is_success:
            logger.warning(
                "Model call returned HTTP %d: %s",
                response.status_code,
                response.text[:200],
            )
            raise ModelInvocationError(
                f"LLM call failed: {response.status_code}",
                kind=ModelFailureKind.HTTP_STATUS,
            )

        try:
            data = response.json()
        except ValueError as error:
            raise ModelInvocationError(
                "Invalid JSON response from LLM",
                kind=ModelFailureKind.INVALID_JSON,
            ) from error

        content = _extract_content(data)
        if not content:
            raise ModelInvocationError(
                "No content in LLM response",
                kind=ModelFailureKind.MISSING_CONTENT,
            )
        try:
            return parse_model_decision(content, tokens_used=_extract_tokens(data))
        except DecisionParseError as error:
            raise ModelInvocationError(str(error), kind=ModelFailureKind(error.kind)) from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpReasoningModel:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _extract_content(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def _extract_tokens(data: dict[str, Any]) -> int | None:
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    total = usage.get("total_tokens")
    if isinstance(total, int) and not isinstance(total, bool):
        return total
    return None
