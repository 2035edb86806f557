"""Gateway protocol: minimal interface for model gateways."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from formcast.gateway.models import (
        BatchItemOutcome,
        BatchJob,
        BatchRequestItem,
        ChatRequest,
        ChatResponse,
    )


@dataclass(frozen=True)
class GatewayCapabilities:
    """Feature flags exposed by gateways."""

    tools: bool
    images: bool
    reasoning: bool = False
    batch: bool = False


@runtime_checkable
class Gateway(Protocol):
    """Chat completion plus batch job APIs."""

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Run one chat-completion turn."""
        ...

    async def create_batch(self, items: list[BatchRequestItem]) -> BatchJob:
        """Submit *items* as one batch job."""
        ...

    async def get_batch(self, batch_id: str) -> BatchJob:
        """Return current status and counts for a batch."""
        ...

    async def get_batch_results(self, batch_id: str) -> list[BatchItemOutcome]:
        """Return per-item outcomes of an ended batch."""
        ...

    async def aclose(self) -> None:
        """Release underlying client resources."""
        ...

    @property
    def capabilities(self) -> GatewayCapabilities:
        """Feature capabilities for option validation."""
        ...
