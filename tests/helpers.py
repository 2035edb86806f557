"""Test helpers (small, reusable doubles and reply builders).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off gateway subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
from typing import Any

from formcast.gateway.models import (
    BatchItemError,
    BatchItemMessage,
    BatchItemOutcome,
    ChatRequest,
    ChatResponse,
    Choice,
    ContentBlock,
    Message,
    ToolCall,
)
from tests.conftest import FakeGateway


def text_response(text: str, *, usage: dict[str, int] | None = None) -> ChatResponse:
    """A final assistant turn carrying *text*."""
    return ChatResponse(
        choices=[Choice(message=Message(role="assistant", content=text))],
        usage=usage if usage is not None else {"total_tokens": 1},
    )


def tool_call(name: str, arguments: Any = None, *, call_id: str | None = None) -> ToolCall:
    """A tool call; dict arguments are JSON-encoded, strings pass through."""
    if arguments is None:
        arguments = {}
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=raw)


def tool_call_response(*calls: ToolCall, text: str = "") -> ChatResponse:
    """An assistant turn requesting *calls*."""
    return ChatResponse(
        choices=[
            Choice(
                message=Message(role="assistant", content=text, tool_calls=calls),
                finish_reason="tool_calls",
            )
        ],
        usage={"total_tokens": 1},
    )


def succeeded(custom_id: str, *texts: str) -> BatchItemOutcome:
    """A succeeded batch outcome whose reply is *texts* as text blocks."""
    return BatchItemOutcome(
        custom_id=custom_id,
        type="succeeded",
        message=BatchItemMessage(
            content=tuple(ContentBlock(type="text", text=t) for t in texts)
        ),
    )


def errored(custom_id: str, error_type: str = "invalid_request_error") -> BatchItemOutcome:
    return BatchItemOutcome(
        custom_id=custom_id,
        type="errored",
        error=BatchItemError(type=error_type, message="bad request"),
    )


@dataclass
class ScriptedGateway(FakeGateway):
    """FakeGateway that returns a scripted sequence of replies/exceptions.

    Strings become final text replies. Once the script runs out every turn
    answers ``{}``.
    """

    script: list[str | ChatResponse | BaseException] = field(default_factory=list)

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        self.chat_requests.append(request)
        if not self.script:
            return text_response("{}")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return text_response(item)
        return item


@dataclass
class GateGateway(FakeGateway):
    """FakeGateway with an explicit barrier for cancellation tests."""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        self.chat_requests.append(request)
        self.started.set()
        await self.release.wait()
        return text_response("{}")
