"""Model gateways: chat completion and batch job transports."""

from .anthropic import AnthropicGateway
from .base import Gateway, GatewayCapabilities
from .mock import MockGateway
from .openai import OpenAIGateway

__all__ = [
    "AnthropicGateway",
    "Gateway",
    "GatewayCapabilities",
    "MockGateway",
    "OpenAIGateway",
]
