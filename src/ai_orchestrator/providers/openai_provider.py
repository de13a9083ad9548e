"""OpenAI provider adapter built on top of ``BaseProvider``."""

from __future__ import annotations

from typing import Any, Dict, Sequence

import httpx

from ai_orchestrator.domain.models import (
    CallOptions,
    Message,
    Provider,
    ProviderCompletion,
)

from .base import BaseProvider, supports_temperature


OPENAI_CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
OPENAI_BASE_URL = "https://api.openai.com"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


class OpenAIProvider(BaseProvider):
    """Primary adapter that speaks to OpenAI's chat completions API."""

    PROVIDER_KEY = Provider.OPENAI

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{OPENAI_CHAT_COMPLETIONS_PATH}"

    async def _send(
        self, model: str, messages: Sequence[Message], options: CallOptions
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        return await self._http.post(
            self.endpoint,
            json=self.build_payload(model, messages, options),
            timeout=self.config.timeout,
            headers=headers,
        )

    def build_payload(
        self, model: str, messages: Sequence[Message], options: CallOptions
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": message.role.value, "content": message.content}
                for message in messages
            ],
        }
        if supports_temperature(model):
            payload["max_tokens"] = options.max_output_tokens
            payload["temperature"] = options.temperature
        else:
            payload["max_completion_tokens"] = options.max_output_tokens
        return payload

    def _map_response(
        self, model: str, data: Dict[str, Any], http_response: httpx.Response
    ) -> ProviderCompletion:
        content = data["choices"][0]["message"]["content"]
        if not isinstance(content, str):
            raise ValueError("OpenAI message content is not text")

        usage = data.get("usage") or {}
        request_id = http_response.headers.get("x-request-id") or data.get("id")
        return ProviderCompletion(
            content=content,
            model=data.get("model") or model,
            prompt_tokens=self._optional_int(usage.get("prompt_tokens")),
            completion_tokens=self._optional_int(usage.get("completion_tokens")),
            total_tokens=self._optional_int(usage.get("total_tokens")),
            request_id=request_id,
        )
