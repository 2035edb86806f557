"""Configuration: frozen Config with explicit provider/model requirements."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Literal

from dotenv import load_dotenv

from formcast.errors import ConfigurationError
from formcast.retry import RetryPolicy

load_dotenv()

ProviderName = Literal["anthropic", "openai"]

# Provider-specific API key environment variable names
_API_KEY_ENV_VARS: dict[ProviderName, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


@dataclass(frozen=True)
class Config:
    """Immutable configuration for a formcast gateway.

    Provider and model are required. API keys are auto-resolved from the
    standard environment variables.

    Example:
        config = Config(provider="anthropic", model="claude-sonnet-4-5")
        # API key is automatically resolved from ANTHROPIC_API_KEY
    """

    provider: ProviderName
    #: Default model for requests that do not name one.
    model: str
    #: Auto-resolved from ``ANTHROPIC_API_KEY`` or ``OPENAI_API_KEY`` when *None*.
    api_key: str | None = None
    #: OpenAI-compatible endpoint override (ignored for Anthropic).
    base_url: str | None = None
    use_mock: bool = False
    max_tokens: int = 4096
    #: Anthropic extended-thinking budget used while reasoning is enabled.
    thinking_budget_tokens: int = 2048
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Auto-resolve API key and validate configuration."""
        if self.provider not in _API_KEY_ENV_VARS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint="Supported providers: 'anthropic', 'openai'",
            )

        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass Config(model='...') naming the model to call.",
            )

        if self.max_tokens < 1:
            raise ConfigurationError(
                f"max_tokens must be ≥ 1, got {self.max_tokens}",
                hint="This caps the model's output tokens per turn.",
            )
        if self.thinking_budget_tokens < 1024:
            raise ConfigurationError(
                f"thinking_budget_tokens must be ≥ 1024, got {self.thinking_budget_tokens}",
                hint="Anthropic rejects thinking budgets below 1024 tokens.",
            )
        if self.provider == "anthropic" and self.thinking_budget_tokens >= self.max_tokens:
            raise ConfigurationError(
                "thinking_budget_tokens must be smaller than max_tokens",
                hint="Raise max_tokens or lower thinking_budget_tokens.",
            )

        if self.api_key is None and not self.use_mock:
            env_var = _API_KEY_ENV_VARS[self.provider]
            object.__setattr__(self, "api_key", os.environ.get(env_var))

        if not self.use_mock and not self.api_key:
            env_var = _API_KEY_ENV_VARS[self.provider]
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
