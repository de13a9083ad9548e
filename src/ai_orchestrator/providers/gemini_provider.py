"""Google Gemini provider adapter leveraging the BaseProvider template."""

from __future__ import annotations

from typing import Any, Dict, Sequence

import httpx

from ai_orchestrator.domain.exceptions import ProviderBlockedError
from ai_orchestrator.domain.models import (
    CallOptions,
    Message,
    Provider,
    ProviderCompletion,
    Role,
)

from .base import BaseProvider, supports_temperature


GEMINI_GENERATE_PATH_TEMPLATE = "/v1beta/models/{model}:generateContent"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_GEMINI_MODEL = "gemini-1.5-pro"

ROLE_LABELS = {
    Role.SYSTEM: "SYSTEM INSTRUCTIONS:",
    Role.USER: "USER:",
    Role.ASSISTANT: "ASSISTANT:",
}
ASSISTANT_TURN_MARKER = ROLE_LABELS[Role.ASSISTANT]


def flatten_messages(messages: Sequence[Message]) -> str:
    """Collapse a role-tagged conversation into a single prompt string.

    Each message is prefixed with its role label, in original order, and the
    prompt ends with an assistant marker so the model continues as assistant.
    """

    blocks = [f"{ROLE_LABELS[message.role]} {message.content}" for message in messages]
    blocks.append(ASSISTANT_TURN_MARKER)
    return "\n\n".join(blocks)


class GeminiProvider(BaseProvider):
    """Secondary adapter for Gemini ``generateContent`` with a flattened prompt."""

    PROVIDER_KEY = Provider.GEMINI

    def resolve_model(self, options: CallOptions) -> str:
        return options.fallback_model_name or self.config.model_name

    def endpoint_for_model(self, model: str) -> str:
        path = GEMINI_GENERATE_PATH_TEMPLATE.format(model=model)
        return f"{self.config.base_url.rstrip('/')}{path}"

    async def _send(
        self, model: str, messages: Sequence[Message], options: CallOptions
    ) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.config.api_key or "",
        }
        return await self._http.post(
            self.endpoint_for_model(model),
            json=self.build_payload(model, messages, options),
            timeout=self.config.timeout,
            headers=headers,
        )

    def build_payload(
        self, model: str, messages: Sequence[Message], options: CallOptions
    ) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "maxOutputTokens": options.max_output_tokens,
        }
        if supports_temperature(model):
            generation_config["temperature"] = options.temperature
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": flatten_messages(messages)}],
                }
            ],
            "generationConfig": generation_config,
        }

    def _map_response(
        self, model: str, data: Dict[str, Any], http_response: httpx.Response
    ) -> ProviderCompletion:
        self._raise_if_blocked(data, http_response)
        candidate = data["candidates"][0]
        parts = candidate["content"]["parts"]
        texts = [part["text"] for part in parts if isinstance(part, dict) and "text" in part]
        if not texts:
            raise ValueError("Gemini candidate has no text parts")

        usage = data.get("usageMetadata") or {}
        return ProviderCompletion(
            content="\n".join(texts),
            model=data.get("modelVersion") or model,
            prompt_tokens=self._optional_int(usage.get("promptTokenCount")),
            completion_tokens=self._optional_int(usage.get("candidatesTokenCount")),
            total_tokens=self._optional_int(usage.get("totalTokenCount")),
            request_id=data.get("responseId"),
        )

    def _raise_if_blocked(
        self, data: Dict[str, Any], http_response: httpx.Response
    ) -> None:
        """Blocked prompts and content-less finished candidates are deterministic."""

        candidates = data.get("candidates")
        reason = None
        if not candidates:
            feedback = data.get("promptFeedback")
            if isinstance(feedback, dict):
                reason = feedback.get("blockReason")
        elif isinstance(candidates, list) and isinstance(candidates[0], dict):
            candidate = candidates[0]
            content = candidate.get("content")
            parts = content.get("parts") if isinstance(content, dict) else None
            if not parts:
                reason = candidate.get("finishReason")
        if reason:
            raise ProviderBlockedError(
                f"Gemini returned no content: {reason}",
                status_code=http_response.status_code,
                context={"provider": self.name.value, "reason": reason},
            )
