from vibeboard.gateway.base import (
    GatewayError,
    GenerationRequest,
    GenerationResponse,
    TextGenerationGateway,
)
from vibeboard.gateway.openai_gateway import SUPPORTED_PROVIDERS, OpenAIGateway
from vibeboard.gateway.queue import RateLimitedCallQueue

__all__ = [
    "GatewayError",
    "GenerationRequest",
    "GenerationResponse",
    "OpenAIGateway",
    "RateLimitedCallQueue",
    "SUPPORTED_PROVIDERS",
    "TextGenerationGateway",
]
