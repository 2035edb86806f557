"""Prompt rendering: default template contract and caller overrides."""

from __future__ import annotations

from pydantic import BaseModel
import pytest

from formcast.errors import PromptTemplateError
from formcast.prompt import (
    STRUCTURED_CALL,
    StructuredCallParams,
    render_prompt,
    render_structured_call,
    select_template,
)
from formcast.request import StructuredRequest

pytestmark = pytest.mark.unit


class Sentiment(BaseModel):
    label: str


class Graph(BaseModel):
    @classmethod
    def describe_type(cls) -> str:
        return "GRAPH-SHAPE: {nodes: [...], edges: [...]}"


def _params(**overrides: object) -> StructuredCallParams:
    values: dict[str, object] = {
        "output_template": '{"label":""}',
        "prompt": "Classify the sentiment.",
        "context": "I love this",
        "max_tool_calls": 0,
    }
    values.update(overrides)
    return StructuredCallParams(**values)  # type: ignore[arg-type]


def test_default_template_includes_every_input() -> None:
    text = render_structured_call(None, _params())

    assert "output only json, starting with the { character" in text
    assert '<output_template>\n{"label":""}\n</output_template>' in text
    assert "Classify the sentiment." in text
    assert "<context_for_task>\nI love this\n</context_for_task>" in text


def test_tool_budget_line_only_when_positive() -> None:
    assert "tool calls" not in render_structured_call(None, _params(max_tool_calls=0))

    text = render_structured_call(None, _params(max_tool_calls=3))
    assert "Make at most 3 tool calls." in text


def test_rendering_is_pure() -> None:
    params = _params(max_tool_calls=2)

    assert render_structured_call(None, params) == render_structured_call(None, params)


def test_override_replaces_default_template() -> None:
    overrides = {STRUCTURED_CALL: "TASK={{ prompt }} CTX={{ context }}"}

    text = render_structured_call(overrides, _params())

    assert text == "TASK=Classify the sentiment. CTX=I love this"


def test_override_for_other_kind_falls_back_to_default() -> None:
    text = render_structured_call({"other": "ignored"}, _params())

    assert "<context_for_task>" in text


def test_malformed_override_is_a_template_error() -> None:
    with pytest.raises(PromptTemplateError) as exc:
        render_structured_call({STRUCTURED_CALL: "{{ prompt "}, _params())

    assert "failed to parse prompt template" in str(exc.value)
    assert exc.value.hint is not None


def test_override_naming_unknown_variable_fails_at_render() -> None:
    with pytest.raises(PromptTemplateError, match="execution failed"):
        render_prompt("{{ not_a_param }}", _params())


def test_sandbox_blocks_unsafe_attribute_access() -> None:
    with pytest.raises(PromptTemplateError):
        render_prompt("{{ prompt.__class__.__mro__[1].__subclasses__() }}", _params())


def test_unknown_template_kind_is_rejected() -> None:
    with pytest.raises(PromptTemplateError, match="Unknown prompt template kind"):
        select_template(None, "summarize")


def test_custom_description_appears_exactly_once_in_rendered_prompt() -> None:
    request = StructuredRequest(output_type=Graph, prompt="Map the system.")

    text = request.render_prompt()

    assert text.count("GRAPH-SHAPE: {nodes: [...], edges: [...]}") == 1


def test_request_renders_zero_value_shape_and_budget() -> None:
    request = StructuredRequest(
        output_type=Sentiment,
        prompt="Classify.",
        context="meh",
        max_tool_calls=2,
    )

    text = request.render_prompt()

    assert '{"label":""}' in text
    assert "Make at most 2 tool calls." in text
    assert "Make at most" not in request.render_prompt(max_tool_calls=0)
