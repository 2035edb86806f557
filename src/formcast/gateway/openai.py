"""OpenAI Chat Completions and Batch API gateway.

Also serves OpenAI-compatible servers (Ollama, vLLM, ...) through
``base_url``. The reasoning flag has no portable Chat Completions
equivalent and is not forwarded.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from formcast.errors import APIError
from formcast.gateway._errors import wrap_gateway_error
from formcast.gateway._utils import sniff_image_mime_type
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

_CHAT_ENDPOINT = "/v1/chat/completions"
_COMPLETION_WINDOW = "24h"
_REQUEST_COUNT_KEY = "request_count"

# OpenAI batch lifecycle -> normalized processing_status.
_STATUS_MAP: dict[str, str] = {
    "validating": "in_progress",
    "in_progress": "in_progress",
    "finalizing": "in_progress",
    "cancelling": "canceling",
    "completed": "ended",
    "failed": "ended",
    "expired": "ended",
    "cancelled": "ended",
}

# Per-item error codes that denote a lifecycle outcome rather than a failure.
_ERROR_CODE_OUTCOMES: dict[str, str] = {
    "batch_expired": "expired",
    "batch_cancelled": "canceled",
}


class OpenAIGateway:
    """OpenAI Chat Completions gateway."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        max_tokens: int = 4096,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Initialize with an API key and optional compatible endpoint."""
        self.api_key = api_key
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.retry = retry or RetryPolicy()
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @property
    def capabilities(self) -> GatewayCapabilities:
        """Return supported feature flags."""
        return GatewayCapabilities(tools=True, images=True, reasoning=False, batch=True)

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Run one turn against the Chat Completions endpoint."""
        client = self._get_client()
        create_kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": _build_messages(request.messages, request.system),
            "max_completion_tokens": request.max_tokens or self.max_tokens,
        }
        if request.tools:
            create_kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters or {"type": "object"},
                    },
                }
                for t in request.tools
            ]
            if request.tool_choice is not None:
                create_kwargs["tool_choice"] = request.tool_choice

        try:
            response = await retry_async(
                lambda: client.chat.completions.create(**create_kwargs),
                policy=self.retry,
                should_retry=should_retry_read,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="openai",
                phase="chat",
                message="OpenAI chat completion failed",
            ) from e
        return _parse_response(response)

    async def create_batch(self, items: list[BatchRequestItem]) -> BatchJob:
        """Upload items as a JSONL file and start a batch over it."""
        client = self._get_client()
        lines = [
            json.dumps(
                {
                    "custom_id": item.custom_id,
                    "method": "POST",
                    "url": _CHAT_ENDPOINT,
                    "body": {
                        "model": item.model,
                        "max_completion_tokens": item.max_tokens,
                        "messages": _build_messages(item.messages, None),
                    },
                }
            )
            for item in items
        ]
        payload = ("\n".join(lines) + "\n").encode("utf-8")

        async def _submit() -> Any:
            uploaded = await client.files.create(
                file=("batch.jsonl", payload), purpose="batch"
            )
            return await client.batches.create(
                input_file_id=uploaded.id,
                endpoint=_CHAT_ENDPOINT,
                completion_window=_COMPLETION_WINDOW,
                metadata={_REQUEST_COUNT_KEY: str(len(items))},
            )

        try:
            batch = await retry_async(
                _submit, policy=self.retry, should_retry=should_retry_side_effect
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="openai",
                phase="batch_create",
                message="failed to create batch",
            ) from e
        return _to_batch_job(batch)

    async def get_batch(self, batch_id: str) -> BatchJob:
        """Retrieve status and counts for a batch."""
        return _to_batch_job(await self._retrieve(batch_id))

    async def get_batch_results(self, batch_id: str) -> list[BatchItemOutcome]:
        """Read the output and error files of an ended batch.

        A batch that failed as a whole (for example on input validation) has
        neither file; each submitted item then gets an ``errored`` outcome
        carrying the batch errors.
        """
        client = self._get_client()
        batch = await self._retrieve(batch_id)

        async def _read_lines(file_id: str) -> list[dict[str, Any]]:
            content = await client.files.content(file_id)
            lines = content.text.splitlines()
            return [json.loads(line) for line in lines if line.strip()]

        async def _fetch() -> list[BatchItemOutcome]:
            outcomes: list[BatchItemOutcome] = []
            for file_id in (batch.output_file_id, batch.error_file_id):
                if file_id:
                    outcomes.extend(_to_outcome(e) for e in await _read_lines(file_id))
            if outcomes or getattr(batch, "status", None) != "failed":
                return outcomes

            input_file_id = getattr(batch, "input_file_id", None)
            if not input_file_id:
                return outcomes
            submitted = await _read_lines(input_file_id)
            return _failed_batch_outcomes(submitted, _batch_errors(batch))

        try:
            return await retry_async(
                _fetch, policy=self.retry, should_retry=should_retry_read
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="openai",
                phase="batch_results",
                message="failed to get batch results",
            ) from e

    async def _retrieve(self, batch_id: str) -> Any:
        client = self._get_client()
        try:
            return await retry_async(
                lambda: client.batches.retrieve(batch_id),
                policy=self.retry,
                should_retry=should_retry_read,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_gateway_error(
                e,
                provider="openai",
                phase="batch_get",
                message="failed to get batch status",
            ) from e

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _build_messages(
    history: list[Message], system: str | None
) -> list[dict[str, Any]]:
    """Convert formcast messages into Chat Completions message dicts."""
    messages: list[dict[str, Any]] = []
    if system and not any(m.role == "system" for m in history):
        messages.append({"role": "system", "content": system})

    for item in history:
        if item.role == "tool":
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": item.tool_call_id or "",
                    "content": item.content,
                }
            )
        elif item.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": item.content}
            if item.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in item.tool_calls
                ]
            messages.append(entry)
        elif item.role == "user" and item.images:
            parts: list[dict[str, Any]] = [{"type": "text", "text": item.content}]
            for image in item.images:
                mime_type = sniff_image_mime_type(image)
                parts.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{image}"},
                    }
                )
            messages.append({"role": "user", "content": parts})
        else:
            messages.append({"role": item.role, "content": item.content})
    return messages


def _parse_response(response: Any) -> ChatResponse:
    """Parse a ChatCompletion into ChatResponse, keeping every choice."""
    choices: list[Choice] = []
    for raw_choice in getattr(response, "choices", None) or []:
        raw_message = getattr(raw_choice, "message", None)
        tool_calls: list[ToolCall] = []
        for tc in getattr(raw_message, "tool_calls", None) or []:
            function = getattr(tc, "function", None)
            tool_calls.append(
                ToolCall(
                    id=str(getattr(tc, "id", "")),
                    name=str(getattr(function, "name", "")),
                    arguments=getattr(function, "arguments", "") or "",
                )
            )
        content = getattr(raw_message, "content", None)
        choices.append(
            Choice(
                message=Message(
                    role="assistant",
                    content=content if isinstance(content, str) else "",
                    tool_calls=tuple(tool_calls),
                ),
                finish_reason=getattr(raw_choice, "finish_reason", None),
            )
        )

    usage: dict[str, int] = {}
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        input_tokens = int(getattr(usage_raw, "prompt_tokens", 0) or 0)
        output_tokens = int(getattr(usage_raw, "completion_tokens", 0) or 0)
        usage = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": int(
                getattr(usage_raw, "total_tokens", 0) or input_tokens + output_tokens
            ),
        }

    response_id = getattr(response, "id", None)
    return ChatResponse(
        choices=choices,
        usage=usage,
        id=response_id if isinstance(response_id, str) else None,
    )


def _to_batch_job(batch: Any) -> BatchJob:
    batch_id = getattr(batch, "id", None)
    if not isinstance(batch_id, str):
        raise APIError("OpenAI returned a batch without an id", phase="batch")

    raw_status = str(getattr(batch, "status", ""))
    status = _STATUS_MAP.get(raw_status, raw_status)

    counts = getattr(batch, "request_counts", None)
    total = int(getattr(counts, "total", 0) or 0)
    completed = int(getattr(counts, "completed", 0) or 0)
    failed = int(getattr(counts, "failed", 0) or 0)
    outstanding = max(0, total - completed - failed)

    request_counts = BatchRequestCounts(
        processing=outstanding if status != "ended" else 0,
        succeeded=completed,
        errored=failed,
        canceled=outstanding if raw_status == "cancelled" else 0,
        expired=outstanding if raw_status == "expired" else 0,
    )
    return BatchJob(
        id=batch_id,
        processing_status=status,
        request_counts=request_counts,
        raw=batch,
        submitted=_submitted_count(batch),
        errors=tuple(error for _line, error in _batch_errors(batch)),
    )


def _submitted_count(batch: Any) -> int | None:
    metadata = getattr(batch, "metadata", None)
    if not isinstance(metadata, dict):
        return None
    try:
        return int(metadata[_REQUEST_COUNT_KEY])
    except (KeyError, TypeError, ValueError):
        return None


def _batch_errors(batch: Any) -> list[tuple[int | None, BatchItemError]]:
    """Batch-level errors paired with the 1-based input line they name, if any."""
    errors = getattr(batch, "errors", None)
    result: list[tuple[int | None, BatchItemError]] = []
    for raw in getattr(errors, "data", None) or []:
        line = getattr(raw, "line", None)
        result.append(
            (
                line if isinstance(line, int) else None,
                BatchItemError(
                    type=str(getattr(raw, "code", None) or "batch_failed"),
                    message=str(getattr(raw, "message", None) or ""),
                ),
            )
        )
    return result


def _failed_batch_outcomes(
    submitted: list[dict[str, Any]],
    errors: list[tuple[int | None, BatchItemError]],
) -> list[BatchItemOutcome]:
    """One errored outcome per input line of a batch that never ran."""
    fallback = BatchItemError(
        type=errors[0][1].type if errors else "batch_failed",
        message="; ".join(e.message for _line, e in errors) or "batch failed",
    )
    by_line = {line: error for line, error in errors if line is not None}
    return [
        BatchItemOutcome(
            custom_id=str(entry.get("custom_id", "")),
            type="errored",
            error=by_line.get(lineno, fallback),
        )
        for lineno, entry in enumerate(submitted, start=1)
    ]


def _to_outcome(entry: dict[str, Any]) -> BatchItemOutcome:
    """Normalize one line of a batch output or error file."""
    custom_id = str(entry.get("custom_id", ""))
    error = entry.get("error")
    if isinstance(error, dict):
        code = str(error.get("code") or "error")
        return BatchItemOutcome(
            custom_id=custom_id,
            type=_ERROR_CODE_OUTCOMES.get(code, "errored"),
            error=BatchItemError(type=code, message=str(error.get("message", ""))),
        )

    response = entry.get("response") or {}
    body = response.get("body") or {}
    if response.get("status_code") != 200:
        body_error = body.get("error") or {}
        return BatchItemOutcome(
            custom_id=custom_id,
            type="errored",
            error=BatchItemError(
                type=str(body_error.get("type") or f"http_{response.get('status_code')}"),
                message=str(body_error.get("message", "")),
            ),
        )

    choices = body.get("choices") or []
    if not choices:
        return BatchItemOutcome(custom_id=custom_id, type="succeeded")
    content = (choices[0].get("message") or {}).get("content")
    blocks = (ContentBlock(type="text", text=content),) if content else ()
    return BatchItemOutcome(
        custom_id=custom_id,
        type="succeeded",
        message=BatchItemMessage(content=blocks),
    )
