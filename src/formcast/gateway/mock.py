"""Mock gateway for offline use and testing."""

from __future__ import annotations

from dataclasses import dataclass, field

from formcast.errors import APIError
from formcast.gateway.base import GatewayCapabilities
from formcast.gateway.models import (
    BatchItemMessage,
    BatchItemOutcome,
    BatchJob,
    BatchRequestCounts,
    BatchRequestItem,
    ChatRequest,
    ChatResponse,
    Choice,
    ContentBlock,
    Message,
)


@dataclass
class MockGateway:
    """Gateway that answers every turn with a fixed reply, without API calls.

    Batches end immediately and every item succeeds with the same reply.
    Requests are recorded for inspection.
    """

    reply: str = "{}"
    chat_requests: list[ChatRequest] = field(default_factory=list)
    _batches: dict[str, list[BatchRequestItem]] = field(default_factory=dict)

    @property
    def capabilities(self) -> GatewayCapabilities:
        """Return supported feature flags."""
        return GatewayCapabilities(tools=True, images=True, reasoning=True, batch=True)

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Record *request* and answer with the fixed reply."""
        self.chat_requests.append(request)
        return ChatResponse(
            choices=[Choice(message=Message(role="assistant", content=self.reply))],
            usage={"input_tokens": 10, "output_tokens": 10, "total_tokens": 20},
            id=f"mock-{len(self.chat_requests)}",
        )

    async def create_batch(self, items: list[BatchRequestItem]) -> BatchJob:
        """Store *items* under a new batch id."""
        batch_id = f"mock-batch-{len(self._batches) + 1}"
        self._batches[batch_id] = list(items)
        return await self.get_batch(batch_id)

    async def get_batch(self, batch_id: str) -> BatchJob:
        """Report a stored batch as ended with every item succeeded."""
        items = self._batch_items(batch_id)
        return BatchJob(
            id=batch_id,
            processing_status="ended",
            request_counts=BatchRequestCounts(succeeded=len(items)),
            submitted=len(items),
        )

    async def get_batch_results(self, batch_id: str) -> list[BatchItemOutcome]:
        """Return one succeeded outcome per stored item."""
        return [
            BatchItemOutcome(
                custom_id=item.custom_id,
                type="succeeded",
                message=BatchItemMessage(
                    content=(ContentBlock(type="text", text=self.reply),)
                ),
            )
            for item in self._batch_items(batch_id)
        ]

    async def aclose(self) -> None:
        """Nothing to release."""

    def _batch_items(self, batch_id: str) -> list[BatchRequestItem]:
        try:
            return self._batches[batch_id]
        except KeyError:
            raise APIError(
                f"Unknown batch: {batch_id!r}",
                status_code=404,
                retryable=False,
                provider="mock",
                phase="batch_get",
            ) from None
