"""Configuration boundary tests."""

from __future__ import annotations

import pytest

from formcast.config import Config
from formcast.errors import ConfigurationError
from formcast.retry import RetryPolicy

pytestmark = pytest.mark.unit


def test_config_creation_with_mock_mode(anthropic_model: str) -> None:
    """Config can be created with mock mode (no API key needed)."""
    cfg = Config(provider="anthropic", model=anthropic_model, use_mock=True)
    assert cfg.provider == "anthropic"
    assert cfg.model == anthropic_model
    assert cfg.api_key is None
    assert cfg.max_tokens == 4096
    assert cfg.retry == RetryPolicy()


def test_config_auto_resolves_api_key_from_env(
    monkeypatch: pytest.MonkeyPatch,
    anthropic_model: str,
) -> None:
    """API key should be auto-resolved from environment."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")

    cfg = Config(provider="anthropic", model=anthropic_model)

    assert cfg.api_key == "env-key"


def test_explicit_api_key_takes_precedence(
    monkeypatch: pytest.MonkeyPatch,
    anthropic_model: str,
) -> None:
    """Explicit api_key should override env."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")

    cfg = Config(provider="anthropic", model=anthropic_model, api_key="explicit-key")

    assert cfg.api_key == "explicit-key"


def test_openai_provider_uses_openai_api_key(
    monkeypatch: pytest.MonkeyPatch,
    openai_model: str,
) -> None:
    """Provider-specific env key selection should prefer OPENAI_API_KEY."""
    monkeypatch.setenv("OPENAI_API_KEY", "openai-secret")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "wrong-one")

    cfg = Config(provider="openai", model=openai_model)

    assert cfg.api_key == "openai-secret"


def test_missing_api_key_raises_clear_error(anthropic_model: str) -> None:
    """Missing API key without mock mode must fail clearly."""
    with pytest.raises(ConfigurationError, match="API key required") as exc:
        Config(provider="anthropic", model=anthropic_model)
    assert exc.value.hint is not None
    assert "ANTHROPIC_API_KEY" in exc.value.hint


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"provider": "gemini"}, "Unknown provider"),
        ({"model": "  "}, "model must be a non-empty string"),
        ({"max_tokens": 0}, "max_tokens"),
        ({"thinking_budget_tokens": 512}, "thinking_budget_tokens must be"),
        ({"max_tokens": 2048, "thinking_budget_tokens": 2048}, "smaller than max_tokens"),
    ],
)
def test_invalid_values_are_rejected(kwargs: dict[str, object], message: str) -> None:
    values: dict[str, object] = {
        "provider": "anthropic",
        "model": "claude-sonnet-4-5",
        "use_mock": True,
    }
    values.update(kwargs)

    with pytest.raises(ConfigurationError, match=message):
        Config(**values)  # type: ignore[arg-type]


def test_openai_ignores_thinking_budget_ordering(openai_model: str) -> None:
    cfg = Config(
        provider="openai",
        model=openai_model,
        use_mock=True,
        max_tokens=1500,
        thinking_budget_tokens=2048,
    )

    assert cfg.max_tokens == 1500


def test_str_redacts_api_key(anthropic_model: str) -> None:
    cfg = Config(provider="anthropic", model=anthropic_model, api_key="sk-secret")

    text = str(cfg)

    assert "sk-secret" not in text
    assert "[REDACTED]" in text
    assert repr(cfg) == text


def test_config_is_frozen(anthropic_model: str) -> None:
    cfg = Config(provider="anthropic", model=anthropic_model, use_mock=True)

    with pytest.raises(AttributeError):
        cfg.model = "other"  # type: ignore[misc]
