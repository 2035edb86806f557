"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker registration,
and automatic API test skipping. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os

import pytest

from formcast.gateway.base import GatewayCapabilities
from formcast.gateway.models import (
    BatchItemError,
    BatchItemOutcome,
    BatchJob,
    BatchRequestCounts,
    BatchRequestItem,
    ChatRequest,
    ChatResponse,
    Choice,
    Message,
)

ANTHROPIC_MODEL = "claude-sonnet-4-5"
OPENAI_MODEL = "gpt-5-nano"

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeGateway:
    """Gateway test double for engine behavior verification.

    Captures calls and returns configurable responses. Chat turns answer
    ``{}``; batches start ``in_progress`` and only end when a test says so
    via :meth:`finish_batch`.
    """

    chat_requests: list[ChatRequest] = field(default_factory=list)
    batch_items: list[BatchRequestItem] = field(default_factory=list)
    jobs: dict[str, BatchJob] = field(default_factory=dict)
    outcomes: dict[str, list[BatchItemOutcome]] = field(default_factory=dict)
    create_batch_calls: int = 0
    results_calls: int = 0
    closed: bool = False
    _capabilities: GatewayCapabilities = field(
        default_factory=lambda: GatewayCapabilities(
            tools=True, images=True, reasoning=True, batch=True
        )
    )

    @property
    def capabilities(self) -> GatewayCapabilities:
        return self._capabilities

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        self.chat_requests.append(request)
        return ChatResponse(
            choices=[Choice(message=Message(role="assistant", content="{}"))],
            usage={"total_tokens": 1},
        )

    async def create_batch(self, items: list[BatchRequestItem]) -> BatchJob:
        self.create_batch_calls += 1
        self.batch_items = list(items)
        job = BatchJob(
            id=f"batch-{self.create_batch_calls}",
            processing_status="in_progress",
            request_counts=BatchRequestCounts(processing=len(items)),
            submitted=len(items),
        )
        self.jobs[job.id] = job
        return job

    async def get_batch(self, batch_id: str) -> BatchJob:
        return self.jobs[batch_id]

    async def get_batch_results(self, batch_id: str) -> list[BatchItemOutcome]:
        self.results_calls += 1
        return list(self.outcomes.get(batch_id, []))

    async def aclose(self) -> None:
        self.closed = True

    def finish_batch(
        self,
        batch_id: str,
        outcomes: list[BatchItemOutcome],
        *,
        errors: tuple[BatchItemError, ...] = (),
    ) -> None:
        """Mark *batch_id* ended with *outcomes* and optional batch-level *errors*."""
        counts = BatchRequestCounts(
            succeeded=sum(o.type == "succeeded" for o in outcomes),
            errored=sum(o.type == "errored" for o in outcomes),
            canceled=sum(o.type == "canceled" for o in outcomes),
            expired=sum(o.type == "expired" for o in outcomes),
        )
        self.jobs[batch_id] = BatchJob(
            id=batch_id,
            processing_status="ended",
            request_counts=counts,
            submitted=self.jobs[batch_id].submitted,
            errors=errors,
        )
        self.outcomes[batch_id] = list(outcomes)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears ANTHROPIC_* and OPENAI_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("ANTHROPIC_", "OPENAI_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================


@pytest.fixture
def anthropic_model() -> str:
    return ANTHROPIC_MODEL


@pytest.fixture
def openai_model() -> str:
    return OPENAI_MODEL


@pytest.fixture
def anthropic_api_key():
    """Return ANTHROPIC_API_KEY or skip the test if unavailable."""
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        pytest.skip("ANTHROPIC_API_KEY not set")
    return key


@pytest.fixture
def openai_api_key():
    """Return OPENAI_API_KEY or skip the test if unavailable."""
    key = os.getenv("OPENAI_API_KEY")
    if not key:
        pytest.skip("OPENAI_API_KEY not set")
    return key
