from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class GatewayError(RuntimeError):
    """Raised when a text-generation provider call fails."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    prompt: str
    max_tokens: int = 2000
    temperature: float = 0.7


@dataclass(frozen=True, slots=True)
class GenerationResponse:
    text: str


class TextGenerationGateway(ABC):
    @abstractmethod
    async def generate(
        self,
        provider_id: str,
        credential: str | None,
        request: GenerationRequest,
        model_hint: str | None = None,
        safety_hint: str | None = None,
    ) -> GenerationResponse:
        """Turn a prompt into completion text using the named provider."""
