"""Domain models for the gateway transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]
BatchOutcomeType = Literal["succeeded", "errored", "canceled", "expired"]


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model; ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class Message:
    """One conversational turn."""

    role: Role
    content: str = ""
    #: Base64-encoded images, no data-URL prefix.
    images: tuple[str, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    #: Opaque gateway data that must be replayed with this message.
    provider_state: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolDeclaration:
    """A tool as advertised to the model."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ChatRequest:
    """A unified chat-completion request."""

    model: str
    messages: list[Message]
    system: str | None = None
    reasoning: bool = True
    tools: list[ToolDeclaration] | None = None
    tool_choice: Literal["auto", "required", "none"] | None = None
    max_tokens: int | None = None


@dataclass(frozen=True)
class Choice:
    """One candidate reply."""

    message: Message
    finish_reason: str | None = None


@dataclass
class ChatResponse:
    """A standardized chat-completion response."""

    choices: list[Choice] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class BatchRequestItem:
    """One entry of a batch submission."""

    custom_id: str
    model: str
    max_tokens: int
    messages: list[Message]

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready view, used for size estimation and logging."""
        messages: list[dict[str, Any]] = []
        for m in self.messages:
            entry: dict[str, Any] = {"role": m.role, "content": m.content}
            if m.images:
                entry["images"] = list(m.images)
            messages.append(entry)
        return {
            "custom_id": self.custom_id,
            "params": {
                "model": self.model,
                "max_tokens": self.max_tokens,
                "messages": messages,
            },
        }


@dataclass(frozen=True)
class BatchRequestCounts:
    """Per-outcome request counts reported for a batch."""

    processing: int = 0
    succeeded: int = 0
    errored: int = 0
    canceled: int = 0
    expired: int = 0


@dataclass(frozen=True)
class BatchJob:
    """Gateway view of a submitted batch.

    ``processing_status`` is ``in_progress``, ``canceling`` or ``ended``.
    ``submitted`` is the number of items sent, when the gateway can tell
    independently of the counts; ``errors`` holds failures of the batch as a
    whole, such as rejected input.
    """

    id: str
    processing_status: str
    request_counts: BatchRequestCounts = field(default_factory=BatchRequestCounts)
    raw: Any = None
    submitted: int | None = None
    errors: tuple[BatchItemError, ...] = ()

    @property
    def ended(self) -> bool:
        return self.processing_status == "ended"

    @property
    def total(self) -> int:
        """Items the batch was created with, falling back to the counts."""
        if self.submitted is not None:
            return self.submitted
        c = self.request_counts
        return c.processing + c.succeeded + c.errored + c.canceled + c.expired


@dataclass(frozen=True)
class BatchItemError:
    """An error attached to a single batch item."""

    type: str
    message: str


@dataclass(frozen=True)
class ContentBlock:
    """A content block of a batch item's reply; only ``text`` blocks carry text."""

    type: str
    text: str = ""


@dataclass(frozen=True)
class BatchItemMessage:
    """The reply message of a succeeded batch item."""

    content: tuple[ContentBlock, ...] = ()


@dataclass(frozen=True)
class BatchItemOutcome:
    """Gateway-reported outcome for one batch item."""

    custom_id: str
    type: str
    message: BatchItemMessage | None = None
    error: BatchItemError | None = None
