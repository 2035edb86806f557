"""Exception hierarchy for formcast."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class FormcastError(Exception):
    """Base exception for all formcast errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(FormcastError):
    """Configuration validation or request construction failed."""


class PromptTemplateError(ConfigurationError):
    """A prompt template could not be parsed or rendered."""


class OutputShapeError(ConfigurationError):
    """The target output shape cannot be described to the model."""


class APIError(FormcastError):
    """Gateway call failed.

    Gateways attach retry metadata so their own bounded retries never rely on
    brittle substring matching. The engines propagate these unchanged.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class OutputParseError(FormcastError):
    """The model's terminal output could not be decoded into the target shape."""

    def __init__(
        self, message: str, *, raw_text: str = "", hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.raw_text = raw_text


class NoStructuredOutputError(OutputParseError):
    """The model's output contained no line starting a JSON object."""


class TurnLimitError(FormcastError):
    """The conversation exceeded the request's ``max_turns`` ceiling."""


class ToolError(Exception):
    """Raised by tool functions to report a failure back to the model.

    Never escapes the turn loop: its message becomes the tool result.
    """


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
