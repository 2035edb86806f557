"""Anthropic Messages and Message Batches API gateway."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from formcast.errors import APIError
from formcast.gateway._errors import wrap_gateway_error
from formcast.gateway._utils import loads_tool_arguments, sniff_image_mime_type
from formcast.gateway.base import GatewayCapabilities
from formcast.gateway.models import (
    BatchItemError,
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
    ToolCall,
)
from formcast.retry import (
    RetryPolicy,
    retry_async,
    should_retry_read,
    should_retry_side_effect,
)

_THINKING_BLOCKS_KEY = "anthropic_thinking_blocks"


class AnthropicGateway:
    """Anthropic Messages API gateway."""

    def __init__(
        self,
        api_key: str,
        *,
        max_tokens: int = 4096,
        thinking_budget_tokens: int = 2048,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.thinking_budget_tokens = thinking_budget_tokens
        self.retry = retry or RetryPolicy()
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    @property
    def capabilities(self) -> GatewayCapabilities:
        """Return supported feature flags."""
        return GatewayCapabilities(tools=True, images=True, reasoning=True, batch=True)

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Run one turn against the Messages API."""
        client = self._get_client()
        system, messages = _build_messages(request.messages)
        if not system and request.system:
            system = request.system

        max_tokens = request.max_tokens or self.max_tokens
        create_kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if system:
            create_kwargs["system"] = system
        if request.tools:
            create_kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters or {"type": "object"},
                }
                for t in request.tools
            ]
            if request.tool_choice is not None:
                create_kwargs["tool_choice"] = {"type": request.tool_choice}
        if request.reasoning:
            create_kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": min(self.thinking_budget_tokens, max_tokens - 1),
            }

        try:
            response = await retry_async(
                lambda: client.messages.create(**create_kwargs),
                policy=self.retry,
                should_retry=should_retry_read,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="anthropic",
                phase="chat",
                message="Anthropic chat completion failed",
            ) from e
        return _parse_response(response)

    async def create_batch(self, items: list[BatchRequestItem]) -> BatchJob:
        """Submit items through the Message Batches API."""
        client = self._get_client()
        requests: list[dict[str, Any]] = []
        for item in items:
            system, messages = _build_messages(item.messages)
            params: dict[str, Any] = {
                "model": item.model,
                "max_tokens": item.max_tokens,
                "messages": messages,
            }
            if system:
                params["system"] = system
            requests.append({"custom_id": item.custom_id, "params": params})

        try:
            batch = await retry_async(
                lambda: client.messages.batches.create(requests=requests),
                policy=self.retry,
                should_retry=should_retry_side_effect,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="anthropic",
                phase="batch_create",
                message="failed to create batch",
            ) from e
        return _to_batch_job(batch)

    async def get_batch(self, batch_id: str) -> BatchJob:
        """Retrieve status and counts for a batch."""
        client = self._get_client()
        try:
            batch = await retry_async(
                lambda: client.messages.batches.retrieve(batch_id),
                policy=self.retry,
                should_retry=should_retry_read,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="anthropic",
                phase="batch_get",
                message="failed to get batch status",
            ) from e
        return _to_batch_job(batch)

    async def get_batch_results(self, batch_id: str) -> list[BatchItemOutcome]:
        """Stream the JSONL results of an ended batch."""
        client = self._get_client()

        async def _fetch() -> list[BatchItemOutcome]:
            decoder = await client.messages.batches.results(batch_id)
            return [_to_outcome(entry) async for entry in decoder]

        try:
            return await retry_async(
                _fetch, policy=self.retry, should_retry=should_retry_read
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="anthropic",
                phase="batch_results",
                message="failed to get batch results",
            ) from e

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _build_messages(history: list[Message]) -> tuple[str | None, list[dict[str, Any]]]:
    """Convert formcast messages into Anthropic's system text and message list.

    Anthropic takes the system prompt out of band and requires strict
    user/assistant alternation, so tool results ride in user messages and
    consecutive same-role messages are merged via ``_append_message``.
    """
    system_parts: list[str] = []
    messages: list[dict[str, Any]] = []

    for item in history:
        if item.role == "system":
            if item.content:
                system_parts.append(item.content)
        elif item.role == "tool":
            _append_message(
                messages,
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": item.tool_call_id or "",
                            "content": item.content,
                        }
                    ],
                },
            )
        elif item.role == "assistant":
            blocks: list[dict[str, Any]] = []
            if item.tool_calls:
                blocks.extend(_thinking_blocks_for_replay(item.provider_state))
            if item.content:
                blocks.append({"type": "text", "text": item.content})
            for tc in item.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": loads_tool_arguments(tc.arguments),
                    }
                )
            if blocks:
                _append_message(messages, {"role": "assistant", "content": blocks})
        else:
            blocks = [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": sniff_image_mime_type(image),
                        "data": image,
                    },
                }
                for image in item.images
            ]
            if item.content or not blocks:
                blocks.append({"type": "text", "text": item.content})
            _append_message(messages, {"role": "user", "content": blocks})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, messages


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match."""
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _thinking_blocks_for_replay(
    provider_state: dict[str, Any] | None,
) -> list[dict[str, Any]]:
    if not provider_state:
        return []
    raw_blocks = provider_state.get(_THINKING_BLOCKS_KEY)
    if not isinstance(raw_blocks, list):
        return []
    return [dict(b) for b in raw_blocks if isinstance(b, dict)]


def _parse_response(response: Any) -> ChatResponse:
    """Parse an Anthropic Message into a single-choice ChatResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    thinking_blocks: list[dict[str, str]] = []

    for block in getattr(response, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "thinking":
            thinking = getattr(block, "thinking", "")
            signature = getattr(block, "signature", None)
            if isinstance(thinking, str) and isinstance(signature, str):
                thinking_blocks.append(
                    {"type": "thinking", "thinking": thinking, "signature": signature}
                )
        elif block_type == "redacted_thinking":
            data = getattr(block, "data", None)
            if isinstance(data, str):
                thinking_blocks.append({"type": "redacted_thinking", "data": data})
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=json.dumps(getattr(block, "input", {})),
                )
            )

    usage: dict[str, int] = {}
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        input_tokens = int(getattr(usage_raw, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage_raw, "output_tokens", 0) or 0)
        usage = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        }

    message = Message(
        role="assistant",
        content="".join(text_parts),
        tool_calls=tuple(tool_calls),
        provider_state=(
            {_THINKING_BLOCKS_KEY: thinking_blocks} if thinking_blocks else None
        ),
    )
    stop_reason = getattr(response, "stop_reason", None)
    response_id = getattr(response, "id", None)
    return ChatResponse(
        choices=[
            Choice(
                message=message,
                finish_reason=str(stop_reason) if stop_reason is not None else None,
            )
        ],
        usage=usage,
        id=response_id if isinstance(response_id, str) else None,
    )


def _to_batch_job(batch: Any) -> BatchJob:
    counts = getattr(batch, "request_counts", None)
    batch_id = getattr(batch, "id", None)
    if not isinstance(batch_id, str):
        raise APIError("Anthropic returned a batch without an id", phase="batch")
    return BatchJob(
        id=batch_id,
        processing_status=str(getattr(batch, "processing_status", "")),
        request_counts=BatchRequestCounts(
            processing=int(getattr(counts, "processing", 0) or 0),
            succeeded=int(getattr(counts, "succeeded", 0) or 0),
            errored=int(getattr(counts, "errored", 0) or 0),
            canceled=int(getattr(counts, "canceled", 0) or 0),
            expired=int(getattr(counts, "expired", 0) or 0),
        ),
        raw=batch,
    )


def _to_outcome(entry: Any) -> BatchItemOutcome:
    result = getattr(entry, "result", None)
    result_type = str(getattr(result, "type", ""))

    message: BatchItemMessage | None = None
    raw_message = getattr(result, "message", None)
    if raw_message is not None:
        message = BatchItemMessage(
            content=tuple(
                ContentBlock(
                    type=str(getattr(block, "type", "")),
                    text=getattr(block, "text", "") or "",
                )
                for block in getattr(raw_message, "content", None) or []
            )
        )

    error: BatchItemError | None = None
    raw_error = getattr(result, "error", None)
    if raw_error is not None:
        # ErrorResponse wraps the actual error object one level down.
        detail = getattr(raw_error, "error", raw_error)
        error = BatchItemError(
            type=str(getattr(detail, "type", "error")),
            message=str(getattr(detail, "message", "")),
        )

    return BatchItemOutcome(
        custom_id=str(getattr(entry, "custom_id", "")),
        type=result_type,
        message=message,
        error=error,
    )
