"""Structured requests and responses."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import TYPE_CHECKING, Generic, TypeVar

from formcast.errors import ConfigurationError
from formcast.gateway._utils import sniff_image_mime_type
from formcast.gateway.models import BatchRequestItem, ChatResponse, Message
from formcast.prompt import StructuredCallParams, render_structured_call
from formcast.shape import describe_output

if TYPE_CHECKING:
    from collections.abc import Mapping

    from formcast.tools import Tool

T = TypeVar("T")

#: Output token cap for batch items, which have no per-call override.
DEFAULT_BATCH_MAX_TOKENS = 4096


@dataclass(frozen=True)
class StructuredRequest(Generic[T]):
    """One structured-generation task.

    Example:
        class Sentiment(BaseModel):
            label: str

        request = StructuredRequest(
            output_type=Sentiment,
            prompt="Classify the sentiment of the text.",
            context="I love this",
        )
    """

    output_type: type[T]
    #: The task itself, essentially the function definition.
    prompt: str
    #: Input for this task; the field that varies across repeated calls.
    context: str = ""
    system: str | None = None
    #: Chat history to start from. Replaces the system message when set, so
    #: include one here if it is still wanted.
    message_prefill: list[Message] | None = None
    #: Base64-encoded images, no data-URL prefix.
    images: list[str] = field(default_factory=list)
    #: Tool-call budget; 0 disables tool use.
    max_tool_calls: int = 0
    tools: list[Tool] = field(default_factory=list)
    #: Template text keyed by template kind, e.g. ``{"structured_call": ...}``.
    prompt_override: Mapping[str, str] | None = None
    #: Reasoning mode; *None* means enabled.
    think: bool | None = None
    #: Falls back to the client's default model.
    model: str | None = None
    #: Ceiling on model turns; *None* means no ceiling beyond the tool budget.
    max_turns: int | None = None

    def __post_init__(self) -> None:
        """Validate request shape early for clear errors."""
        if not isinstance(self.prompt, str):
            raise ConfigurationError(
                "prompt must be a string",
                hint="Pass prompt='Summarize the text.'",
            )
        if not isinstance(self.max_tool_calls, int) or self.max_tool_calls < 0:
            raise ConfigurationError(
                f"max_tool_calls must be a non-negative integer, got {self.max_tool_calls!r}",
                hint="Use 0 to disable tool use.",
            )
        if self.max_turns is not None and (
            not isinstance(self.max_turns, int) or self.max_turns < 1
        ):
            raise ConfigurationError(
                f"max_turns must be a positive integer or None, got {self.max_turns!r}",
            )
        for i, img in enumerate(self.images):
            if not isinstance(img, str):
                raise ConfigurationError(
                    "images must be base64-encoded strings",
                    hint="Pass base64.b64encode(data).decode() without a data: prefix.",
                )
            try:
                sniff_image_mime_type(img)
            except ConfigurationError as e:
                raise ConfigurationError(f"image {i}: {e}", hint=e.hint) from e

    @property
    def reasoning(self) -> bool:
        """Effective reasoning flag."""
        return True if self.think is None else self.think

    def render_prompt(self, *, max_tool_calls: int | None = None) -> str:
        """Render the user message content for this request.

        Raises:
            OutputShapeError: If the output type cannot be described.
            PromptTemplateError: If the template cannot be rendered.
        """
        return render_structured_call(
            self.prompt_override,
            StructuredCallParams(
                output_template=describe_output(self.output_type),
                prompt=self.prompt,
                context=self.context,
                max_tool_calls=(
                    self.max_tool_calls if max_tool_calls is None else max_tool_calls
                ),
            ),
        )

    def initial_messages(self, content: str) -> list[Message]:
        """Seed the conversation: prefill or system message, then the user turn."""
        messages: list[Message] = []
        if self.message_prefill:
            messages.extend(self.message_prefill)
        elif self.system:
            messages.append(Message(role="system", content=self.system))
        messages.append(Message(role="user", content=content, images=tuple(self.images)))
        return messages

    def to_batch_item(
        self,
        custom_id: str,
        model: str,
        *,
        max_tokens: int = DEFAULT_BATCH_MAX_TOKENS,
    ) -> BatchRequestItem:
        """Render this request as a batch entry; tools are never offered in batches."""
        content = self.render_prompt(max_tool_calls=0)
        return BatchRequestItem(
            custom_id=custom_id,
            model=model,
            max_tokens=max_tokens,
            messages=self.initial_messages(content),
        )

    def estimate_size(
        self,
        model: str | None = None,
        *,
        max_tokens: int = DEFAULT_BATCH_MAX_TOKENS,
    ) -> int:
        """Estimate the bytes this request adds to a batch submission.

        Useful for checking provider batch size limits before submitting.
        """
        item = self.to_batch_item("estimate", model or self.model or "", max_tokens=max_tokens)
        return len(json.dumps(item.to_dict()).encode("utf-8"))


@dataclass
class Response(Generic[T]):
    """Terminal result of an interactive structured call."""

    output: T
    #: Prose the model wrote before the payload, if any.
    model_comment: str
    raw_response: ChatResponse
    #: The full history sent on the final turn.
    input_messages: list[Message]
    tool_calls_made: int = 0
    #: Token usage summed over every turn of the call.
    usage: dict[str, int] = field(default_factory=dict)
