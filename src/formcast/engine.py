"""Turn loop: drive one structured call to a typed result.

States::

    AWAITING_MODEL --(tool calls)--> HANDLING_TOOLS --> AWAITING_MODEL
    AWAITING_MODEL --(final text)--> DONE
    any --(gateway / template / decode error)--> FAILED

The conversation is append-only. Tools are offered only while the tool-call
budget is positive. Once it is spent they stay declared with
``tool_choice="none"`` so the tool blocks already in the history remain
valid. Calls requested past the budget are never executed; each is
answered with a budget-exhausted error so the model can finalize. There is
no retry here: gateway errors propagate unchanged.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Generic, Literal, TypeVar

from formcast.errors import APIError, ConfigurationError, TurnLimitError
from formcast.extract import extract
from formcast.gateway.models import (
    ChatRequest,
    ChatResponse,
    Message,
    ToolCall,
    ToolDeclaration,
)
from formcast.request import Response
from formcast.shape import decode_output
from formcast.tools import declarations, execute_tool_call

if TYPE_CHECKING:
    from collections.abc import Sequence

    from formcast.gateway.base import Gateway
    from formcast.request import StructuredRequest
    from formcast.tools import Tool

T = TypeVar("T")

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED = "Error: tool call budget exhausted; respond with the final JSON output"


class TurnState(enum.Enum):
    """States of the turn loop."""

    AWAITING_MODEL = "awaiting_model"
    HANDLING_TOOLS = "handling_tools"
    DONE = "done"
    FAILED = "failed"


class TurnLoop(Generic[T]):
    """One structured call, run to completion by :meth:`run`.

    The loop object keeps its history after a failure or cancellation, so
    callers can inspect how far a call got. Instances are single-use.
    """

    def __init__(
        self,
        gateway: Gateway,
        request: StructuredRequest[T],
        *,
        model: str,
        tools: Sequence[Tool] = (),
    ) -> None:
        self.gateway = gateway
        self.request = request
        self.model = model
        self.tools = list(tools)
        self.state = TurnState.AWAITING_MODEL
        self.messages: list[Message] = []
        self.remaining_tool_calls = request.max_tool_calls
        self.tool_calls_made = 0
        self.turns = 0
        self.usage: dict[str, int] = {}
        self._started = False

    async def run(self) -> Response[T]:
        """Drive the conversation until a typed result is decoded.

        Raises:
            ConfigurationError: Template or output shape could not be rendered,
                or the gateway lacks images or tools the request needs.
            APIError: The gateway failed; propagated unchanged.
            OutputParseError: The final reply did not decode into the shape.
            TurnLimitError: ``max_turns`` was exceeded.
        """
        if self._started:
            raise RuntimeError("TurnLoop.run() may only be called once")
        self._started = True

        try:
            content = self.request.render_prompt()
            self.messages = self.request.initial_messages(content)
            tool_decls = declarations(self.tools)
            self._check_capabilities(tool_decls)

            while True:
                response = await self._await_model(tool_decls)
                message = response.choices[0].message

                if not message.tool_calls:
                    return self._finish(response, message)

                logger.debug("Model requested %d tool call(s)", len(message.tool_calls))
                self.messages.append(message)
                self.state = TurnState.HANDLING_TOOLS
                self.remaining_tool_calls = await self._handle_tool_calls(
                    message.tool_calls, self.remaining_tool_calls
                )
                self.state = TurnState.AWAITING_MODEL
        except Exception:
            self.state = TurnState.FAILED
            raise

    def _check_capabilities(self, tool_decls: list[ToolDeclaration]) -> None:
        capabilities = self.gateway.capabilities
        if not capabilities.images and any(m.images for m in self.messages):
            raise ConfigurationError(
                "gateway does not accept images",
                hint="Drop the images or use a gateway with image support.",
            )
        if not capabilities.tools and tool_decls and self.request.max_tool_calls > 0:
            raise ConfigurationError(
                "gateway does not support tool calls",
                hint="Set max_tool_calls=0 or use a gateway with tool support.",
            )

    async def _await_model(self, tool_decls: list[ToolDeclaration]) -> ChatResponse:
        max_turns = self.request.max_turns
        if max_turns is not None and self.turns >= max_turns:
            raise TurnLimitError(
                f"structured call exceeded max_turns={max_turns}",
                hint="Raise max_turns or lower max_tool_calls.",
            )

        tools: list[ToolDeclaration] | None = None
        tool_choice: Literal["auto", "none"] | None = None
        if tool_decls and self.remaining_tool_calls > 0:
            tools, tool_choice = tool_decls, "auto"
        elif tool_decls and any(m.tool_calls for m in self.messages):
            # History holds tool blocks, which providers only accept alongside
            # the declarations; "none" keeps the model from calling them.
            tools, tool_choice = tool_decls, "none"

        chat_request = ChatRequest(
            model=self.model,
            messages=list(self.messages),
            # A prefilled history replaces the system instruction.
            system=None if self.request.message_prefill else self.request.system,
            reasoning=self.request.reasoning,
            tools=tools,
            tool_choice=tool_choice,
        )
        logger.debug(
            "Making completion request: model=%s messages=%d tools=%d tool_choice=%s",
            self.model,
            len(chat_request.messages),
            len(tools or ()),
            tool_choice,
        )

        self.turns += 1
        response = await self.gateway.chat_completion(chat_request)
        if not response.choices:
            raise APIError(
                "gateway returned no choices",
                retryable=False,
                phase="chat",
            )
        for key, value in response.usage.items():
            self.usage[key] = self.usage.get(key, 0) + value
        return response

    async def _handle_tool_calls(
        self, tool_calls: Sequence[ToolCall], remaining: int
    ) -> int:
        """Answer every call in order and return the budget left afterwards."""
        for call in tool_calls:
            if remaining <= 0:
                logger.debug("Tool call %s skipped: budget exhausted", call.name)
                result = BUDGET_EXHAUSTED
            else:
                logger.debug("Tool call: %s %s", call.name, call.arguments)
                result = await execute_tool_call(call, self.tools)
                self.tool_calls_made += 1
                remaining -= 1

            self.messages.append(
                Message(role="tool", content=result, tool_call_id=call.id)
            )
        return remaining

    def _finish(self, response: ChatResponse, message: Message) -> Response[T]:
        extraction = extract(message.content)
        logger.debug("Model output:\n%s", extraction.cleaned)
        if extraction.comment:
            logger.debug(
                "Model sent a message along with its output: %r", extraction.comment
            )

        output = decode_output(
            self.request.output_type, extraction.payload, extraction.cleaned
        )
        self.state = TurnState.DONE
        return Response(
            output=output,
            model_comment=extraction.comment,
            raw_response=response,
            input_messages=list(self.messages),
            tool_calls_made=self.tool_calls_made,
            usage=dict(self.usage),
        )
