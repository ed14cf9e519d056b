from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from vibeboard.gateway.base import (
    GatewayError,
    GenerationRequest,
    GenerationResponse,
    TextGenerationGateway,
)

# Providers reachable through an OpenAI-compatible chat completions endpoint.
SUPPORTED_PROVIDERS: dict[str, dict[str, str | None]] = {
    "openai": {"base_url": None, "default_model": "gpt-4o-mini"},
    "ollama": {"base_url": "http://localhost:11434/v1", "default_model": "llama3.1"},
}


class OpenAIGateway(TextGenerationGateway):
    """Gateway backed by the ``openai`` SDK, one client per provider/credential."""

    def __init__(self, *, base_url: str | None = None, client_factory: Any | None = None) -> None:
        self.base_url = base_url
        self._client_factory = client_factory
        self._clients: dict[tuple[str, str | None], Any] = {}

    def _client(self, provider_id: str, credential: str | None) -> Any:
        cache_key = (provider_id, credential)
        if cache_key in self._clients:
            return self._clients[cache_key]
        provider = SUPPORTED_PROVIDERS.get(provider_id)
        if provider is None:
            raise GatewayError(
                f"Unsupported provider: {provider_id}", provider=provider_id, retriable=False
            )
        base_url = self.base_url or provider["base_url"]
        # Local OpenAI-compatible servers ignore the key but the SDK requires one.
        api_key = credential or ("ollama" if provider_id == "ollama" else None)
        if self._client_factory is not None:
            client = self._client_factory(api_key=api_key, base_url=base_url)
        else:
            from openai import OpenAI

            try:
                client = OpenAI(api_key=api_key, base_url=base_url)
            except Exception as exc:
                raise GatewayError(
                    f"Could not create client for {provider_id}: {exc}",
                    provider=provider_id,
                    retriable=False,
                ) from exc
        self._clients[cache_key] = client
        return client

    @staticmethod
    def _extract_text(payload: Any) -> str:
        choices = getattr(payload, "choices", None)
        if choices is None and isinstance(payload, dict):
            choices = payload.get("choices")
        if not choices:
            return ""
        first = choices[0]
        message = getattr(first, "message", None)
        if message is None and isinstance(first, dict):
            message = first.get("message")
        content = getattr(message, "content", None)
        if content is None and isinstance(message, dict):
            content = message.get("content")
        return content if isinstance(content, str) else ""

    async def generate(
        self,
        provider_id: str,
        credential: str | None,
        request: GenerationRequest,
        model_hint: str | None = None,
        safety_hint: str | None = None,
    ) -> GenerationResponse:
        client = self._client(provider_id, credential)
        model_name = model_hint or SUPPORTED_PROVIDERS[provider_id]["default_model"]
        if safety_hint:
            logger.debug(f"Provider {provider_id} has no safety setting; ignoring {safety_hint}")

        def _request() -> Any:
            return client.chat.completions.create(
                model=model_name,
                messages=[{"role": "user", "content": request.prompt}],
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )

        try:
            payload = await asyncio.to_thread(_request)
        except Exception as exc:
            raise GatewayError(
                f"{provider_id} generation failed: {exc}", provider=provider_id
            ) from exc

        text = self._extract_text(payload).strip()
        if not text:
            raise GatewayError(f"{provider_id} returned an empty completion", provider=provider_id)
        return GenerationResponse(text=text)
