"""Formcast: typed structured generation with tools and batches.

Public API:
    - call_structured(): One structured call, tools included
    - submit_batch() / get_batch_results(): Offline batches
    - Client: Reusable gateway, default model and tool registry
    - StructuredRequest: What to generate
    - Config: Configuration dataclass
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from formcast.batch import BatchResponse, BatchResult
from formcast.client import Client, close_quietly, create_gateway
from formcast.config import Config
from formcast.errors import (
    APIError,
    ConfigurationError,
    FormcastError,
    NoStructuredOutputError,
    OutputParseError,
    OutputShapeError,
    PromptTemplateError,
    RateLimitError,
    ToolError,
    TurnLimitError,
)
from formcast.gateway.models import BatchItemError, Message
from formcast.request import Response, StructuredRequest
from formcast.retry import RetryPolicy
from formcast.shape import describe_output
from formcast.tools import Tool, ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("formcast")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("formcast").addHandler(logging.NullHandler())

T = TypeVar("T")


async def call_structured(
    request: StructuredRequest[T],
    *,
    config: Config,
    tools: ToolRegistry | Iterable[Tool] | None = None,
) -> Response[T]:
    """Run one structured call.

    Args:
        request: What to generate and the shape to decode it into.
        config: Configuration specifying provider and default model.
        tools: Tools offered alongside ``request.tools``.

    Returns:
        Response whose ``output`` is an instance of ``request.output_type``.

    Example:
        config = Config(provider="anthropic", model="claude-sonnet-4-5")
        response = await call_structured(
            StructuredRequest(output_type=Sentiment, prompt="Classify.", context=text),
            config=config,
        )
        print(response.output.label)
    """
    client = Client.from_config(config, tools=tools)
    try:
        return await client.call_structured(request)
    finally:
        await close_quietly(client.gateway)


async def submit_batch(
    requests: Sequence[StructuredRequest[T]], *, config: Config
) -> BatchResponse[T]:
    """Submit *requests* as one batch job and return its initial status."""
    client = Client.from_config(config)
    try:
        return await client.submit_batch(requests)
    finally:
        await close_quietly(client.gateway)


async def get_batch_results(
    batch_id: str, output_type: type[T], *, config: Config
) -> BatchResponse[T]:
    """Poll a batch; ``results`` is populated once it has ended."""
    client = Client.from_config(config)
    try:
        return await client.get_batch_results(batch_id, output_type)
    finally:
        await close_quietly(client.gateway)


__all__ = [
    "APIError",
    "BatchItemError",
    "BatchResponse",
    "BatchResult",
    "Client",
    "Config",
    "ConfigurationError",
    "FormcastError",
    "Message",
    "NoStructuredOutputError",
    "OutputParseError",
    "OutputShapeError",
    "PromptTemplateError",
    "RateLimitError",
    "Response",
    "RetryPolicy",
    "StructuredRequest",
    "Tool",
    "ToolError",
    "ToolRegistry",
    "TurnLimitError",
    "call_structured",
    "create_gateway",
    "describe_output",
    "get_batch_results",
    "submit_batch",
]
