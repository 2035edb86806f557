"""Client: a gateway, a default model and the process-owned tools."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from formcast import batch
from formcast.engine import TurnLoop
from formcast.errors import ConfigurationError
from formcast.request import DEFAULT_BATCH_MAX_TOKENS
from formcast.tools import ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from types import TracebackType

    from formcast.batch import BatchResponse
    from formcast.config import Config
    from formcast.gateway.base import Gateway
    from formcast.request import Response, StructuredRequest
    from formcast.tools import Tool

T = TypeVar("T")

logger = logging.getLogger(__name__)


def create_gateway(config: Config) -> Gateway:
    """Get the appropriate gateway based on configuration."""
    if config.use_mock:
        from formcast.gateway.mock import MockGateway

        return MockGateway()

    if config.provider == "openai":
        from formcast.gateway.openai import OpenAIGateway

        if not config.api_key:
            raise ConfigurationError(
                "api_key required for real API",
                hint="Set OPENAI_API_KEY or pass Config(api_key=...).",
            )
        return OpenAIGateway(
            config.api_key,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            retry=config.retry,
        )

    from formcast.gateway.anthropic import AnthropicGateway

    if not config.api_key:
        raise ConfigurationError(
            "api_key required for real API",
            hint="Set ANTHROPIC_API_KEY or pass Config(api_key=...).",
        )
    return AnthropicGateway(
        config.api_key,
        max_tokens=config.max_tokens,
        thinking_budget_tokens=config.thinking_budget_tokens,
        retry=config.retry,
    )


class Client:
    """Runs structured calls and batches against one gateway.

    Example:
        async with Client.from_config(config) as client:
            response = await client.call_structured(request)
            print(response.output)
    """

    def __init__(
        self,
        gateway: Gateway,
        *,
        model: str | None = None,
        tools: ToolRegistry | Iterable[Tool] | None = None,
        max_tokens: int = DEFAULT_BATCH_MAX_TOKENS,
    ) -> None:
        self.gateway = gateway
        self.model = model
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.max_tokens = max_tokens

    @classmethod
    def from_config(
        cls, config: Config, *, tools: ToolRegistry | Iterable[Tool] | None = None
    ) -> Client:
        """Build a client whose gateway and default model come from *config*."""
        return cls(
            create_gateway(config),
            model=config.model,
            tools=tools,
            max_tokens=config.max_tokens,
        )

    def register_tool(self, tool: Tool) -> Tool:
        """Make *tool* available to every structured call of this client."""
        return self.tools.register(tool)

    async def call_structured(self, request: StructuredRequest[T]) -> Response[T]:
        """Run *request* through the turn loop and return its typed result."""
        loop = TurnLoop(
            self.gateway,
            request,
            model=self._resolve_model(request.model),
            tools=self.tools.merged(request.tools),
        )
        return await loop.run()

    async def submit_batch(
        self,
        requests: Sequence[StructuredRequest[T]],
        *,
        model: str | None = None,
    ) -> BatchResponse[T]:
        """Submit *requests* as one batch job; item ``i`` gets id ``request-i``."""
        return await batch.submit_batch(
            self.gateway,
            self._resolve_model(model),
            requests,
            max_tokens=self.max_tokens,
        )

    async def get_batch_results(
        self, batch_id: str, output_type: type[T]
    ) -> BatchResponse[T]:
        """Poll a batch; results are populated only once it has ended."""
        return await batch.poll_batch(self.gateway, batch_id, output_type)

    async def aclose(self) -> None:
        """Close the underlying gateway."""
        await self.gateway.aclose()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _resolve_model(self, model: str | None) -> str:
        resolved = model or self.model
        if not resolved:
            raise ConfigurationError(
                "no model given",
                hint="Set StructuredRequest.model or Client(model=...).",
            )
        return resolved


async def close_quietly(gateway: Any) -> None:
    """Close *gateway*, logging (not raising) cleanup failures."""
    aclose = getattr(gateway, "aclose", None)
    if not callable(aclose):
        return
    try:
        await aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        logger.warning("Gateway cleanup failed: %s", exc)
