"""Batch engine: submit many structured requests as one job, reconcile later.

Batch items are rendered exactly like the first turn of an interactive call,
except that tools are never offered: there is no live round-trip in which to
run them.

Polling is stateless and repeatable. Results are decoded only once the job
has ended, and decoded again on every poll. Each item resolves on its own:
a bad item becomes a local error on its :class:`BatchResult` and never
fails the batch. Every submitted position gets a result: one the gateway
never reported comes back errored.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from formcast.errors import ConfigurationError, OutputParseError
from formcast.extract import extract
from formcast.gateway.models import BatchItemError, BatchRequestCounts
from formcast.request import DEFAULT_BATCH_MAX_TOKENS
from formcast.shape import decode_output

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from formcast.gateway.base import Gateway
    from formcast.gateway.models import BatchItemOutcome, BatchJob, BatchRequestItem
    from formcast.request import StructuredRequest

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class BatchResult(Generic[T]):
    """Outcome of one batch item.

    ``result_type`` is ``succeeded``, ``errored``, ``canceled`` or
    ``expired``. A succeeded item may still carry a local ``error`` when its
    reply could not be decoded, in which case ``output`` is *None*.
    """

    custom_id: str
    result_type: str
    output: T | None = None
    model_comment: str = ""
    error: BatchItemError | None = None


@dataclass
class BatchResponse(Generic[T]):
    """Status of a batch and, once it has ended, its per-item results."""

    batch_id: str
    status: str
    request_counts: BatchRequestCounts
    results: list[BatchResult[T]] | None = None
    raw_batch: Any = None


def custom_id_for(index: int) -> str:
    """Correlation id of the request at *index* in a submission."""
    return f"request-{index}"


def build_batch_items(
    requests: Sequence[StructuredRequest[Any]],
    model: str,
    *,
    max_tokens: int = DEFAULT_BATCH_MAX_TOKENS,
) -> list[BatchRequestItem]:
    """Render *requests* into batch items with positional correlation ids.

    Raises:
        ConfigurationError: If *requests* is empty, or a request cannot be
            rendered (the message names its index).
    """
    if not requests:
        raise ConfigurationError(
            "no requests provided",
            hint="Pass at least one StructuredRequest to submit a batch.",
        )

    items: list[BatchRequestItem] = []
    for i, request in enumerate(requests):
        try:
            item = request.to_batch_item(
                custom_id_for(i), request.model or model, max_tokens=max_tokens
            )
        except ConfigurationError as e:
            raise type(e)(f"request {i}: {e}", hint=e.hint) from e
        items.append(item)
    return items


async def submit_batch(
    gateway: Gateway,
    model: str,
    requests: Sequence[StructuredRequest[T]],
    *,
    max_tokens: int = DEFAULT_BATCH_MAX_TOKENS,
) -> BatchResponse[T]:
    """Render and submit *requests* as one job."""
    items = build_batch_items(requests, model, max_tokens=max_tokens)
    if not gateway.capabilities.batch:
        raise ConfigurationError(
            "gateway does not support batch jobs",
            hint="Use call_structured for each request instead.",
        )
    logger.debug("Submitting batch of %d request(s) model=%s", len(items), model)
    job = await gateway.create_batch(items)
    return _response_for(job)


async def poll_batch(
    gateway: Gateway, batch_id: str, output_type: type[T]
) -> BatchResponse[T]:
    """Return current status; decode every item once the batch has ended."""
    job = await gateway.get_batch(batch_id)
    response: BatchResponse[T] = _response_for(job)
    if not job.ended:
        return response

    outcomes = await gateway.get_batch_results(batch_id)
    results = reconcile(outcomes, output_type)
    response.results = results + _missing_results(job, {r.custom_id for r in results})
    return response


def reconcile(
    outcomes: Iterable[BatchItemOutcome], output_type: type[T]
) -> list[BatchResult[T]]:
    """Resolve every outcome to exactly one result, in order."""
    return [reconcile_outcome(outcome, output_type) for outcome in outcomes]


def reconcile_outcome(outcome: BatchItemOutcome, output_type: type[T]) -> BatchResult[T]:
    """Classify and decode a single gateway outcome."""
    result: BatchResult[T] = BatchResult(
        custom_id=outcome.custom_id, result_type=outcome.type
    )

    if outcome.type == "errored":
        result.error = outcome.error
        return result
    if outcome.type != "succeeded":
        return result

    if outcome.message is None:
        result.error = BatchItemError(
            type="missing_message",
            message="result marked as succeeded but message is nil",
        )
        return result
    if not outcome.message.content:
        result.error = BatchItemError(
            type="missing_content",
            message="result marked as succeeded but no content returned",
        )
        return result

    text = "".join(b.text for b in outcome.message.content if b.type == "text")
    extraction = extract(text)
    result.model_comment = extraction.comment

    if not extraction.payload:
        result.error = BatchItemError(
            type="no_json_output", message="no JSON output found in response"
        )
        return result

    try:
        result.output = decode_output(output_type, extraction.payload, extraction.cleaned)
    except OutputParseError as e:
        logger.debug("Batch item %s failed to decode: %s", outcome.custom_id, e)
        result.error = BatchItemError(type="parsing_error", message=str(e))
    return result


def _missing_results(job: BatchJob, seen: set[str]) -> list[BatchResult[Any]]:
    """Errored results for submitted positions the gateway did not report."""
    if job.errors:
        error = BatchItemError(
            type=job.errors[0].type,
            message="; ".join(e.message for e in job.errors),
        )
    else:
        error = BatchItemError(
            type="missing_result", message="gateway returned no result for this item"
        )

    missing = [
        custom_id_for(i) for i in range(job.total) if custom_id_for(i) not in seen
    ]
    if missing:
        logger.warning(
            "Batch %s ended without results for %d item(s)", job.id, len(missing)
        )
    return [
        BatchResult(custom_id=custom_id, result_type="errored", error=error)
        for custom_id in missing
    ]


def _response_for(job: BatchJob) -> BatchResponse[Any]:
    return BatchResponse(
        batch_id=job.id,
        status=job.processing_status,
        request_counts=job.request_counts,
        raw_batch=job.raw,
    )
