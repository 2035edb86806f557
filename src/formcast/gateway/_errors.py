"""Map SDK exceptions onto :class:`~formcast.errors.APIError`.

Both provider SDKs raise their own exception trees, sometimes wrapping an
httpx error. The gateway only needs three facts from any of them: an HTTP
status, a Retry-After delay and whether the failure happened in transport.
Those are read once from the exception chain and attached to the APIError
so retry decisions never depend on message text.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from formcast.errors import APIError, RateLimitError, _walk_exception_chain
from formcast.retry import RETRYABLE_STATUS_CODES

_KEY_ENV_VARS = {"anthropic": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY"}


@dataclass(frozen=True)
class _Signals:
    status_code: int | None = None
    retry_after_s: float | None = None
    transport: bool = False

    @property
    def retryable(self) -> bool:
        return (
            self.transport
            or self.retry_after_s is not None
            or self.status_code in RETRYABLE_STATUS_CODES
        )


def _as_status(value: Any) -> int | None:
    if isinstance(value, int) and 100 <= value <= 599:
        return value
    return None


def _status_of(e: BaseException) -> int | None:
    return (
        _as_status(getattr(e, "status_code", None))
        or _as_status(getattr(e, "status", None))
        or _as_status(getattr(getattr(e, "response", None), "status_code", None))
    )


def _retry_after_of(e: BaseException) -> float | None:
    value = getattr(e, "retry_after", None)
    if isinstance(value, (int, float)) and value >= 0:
        return float(value)

    headers: Any = getattr(getattr(e, "response", None), "headers", None)
    try:
        raw = headers.get("Retry-After") if headers is not None else None
    except (AttributeError, TypeError):
        return None
    if not isinstance(raw, str):
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        # HTTP-date form is not worth parsing for a bounded retry.
        return None
    return seconds if seconds >= 0 else None


def _scan(exc: BaseException) -> _Signals:
    status_code: int | None = None
    retry_after_s: float | None = None
    transport = False
    for e in _walk_exception_chain(exc):
        status_code = status_code or _status_of(e)
        if retry_after_s is None:
            retry_after_s = _retry_after_of(e)
        transport = transport or isinstance(
            e, (httpx.TimeoutException, httpx.RequestError)
        )
    return _Signals(status_code, retry_after_s, transport)


def _credentials_hint(provider: str, status_code: int | None) -> str | None:
    if status_code not in (401, 403):
        return None
    env_var = _KEY_ENV_VARS.get(provider, "the API key")
    return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."


def wrap_gateway_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Return an APIError for *exc* carrying status and retry metadata.

    Cancellation is re-raised. An APIError raised inside the gateway is
    returned as is, with missing provider, phase and hint filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.hint = exc.hint or hint
        return exc

    signals = _scan(exc)
    text = message or f"{provider} {phase} failed"
    if signals.status_code is not None:
        text = f"{text} (status={signals.status_code})"
    if str(exc):
        text = f"{text}: {exc}"

    cls = RateLimitError if signals.status_code == 429 else APIError
    return cls(
        text,
        hint=hint or _credentials_hint(provider, signals.status_code),
        retryable=signals.retryable,
        status_code=signals.status_code,
        retry_after_s=signals.retry_after_s,
        provider=provider,
        phase=phase,
    )
