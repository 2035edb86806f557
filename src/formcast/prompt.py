"""Prompt rendering for structured calls.

Templates are Jinja2 text rendered in a sandbox with strict undefined
variables. Rendering is a pure function of the template text and a
:class:`StructuredCallParams`; any failure is a configuration error for the
request and is never retried.

Template variables: ``output_template``, ``prompt``, ``context`` and
``max_tool_calls``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from formcast.errors import PromptTemplateError

if TYPE_CHECKING:
    from collections.abc import Mapping

#: Template kind used for the first message of a structured call.
STRUCTURED_CALL = "structured_call"

DEFAULT_STRUCTURED_CALL_TEMPLATE = """
When responding, ensure your output matches the following template strictly, output only json, starting with the { character
<output_template>
{{ output_template }}
</output_template>
{{ prompt }}
{% if max_tool_calls > 0 %}
Make at most {{ max_tool_calls }} tool calls.
{% endif %}
<context_for_task>
{{ context }}
</context_for_task>"""

_DEFAULT_TEMPLATES: dict[str, str] = {
    STRUCTURED_CALL: DEFAULT_STRUCTURED_CALL_TEMPLATE,
}

_ENV = SandboxedEnvironment(
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class StructuredCallParams:
    """Inputs of the structured-call template."""

    output_template: str
    prompt: str
    context: str
    max_tool_calls: int


def select_template(
    overrides: Mapping[str, str] | None, kind: str = STRUCTURED_CALL
) -> str:
    """Return the caller's template for *kind*, else the built-in default."""
    if overrides is not None and kind in overrides:
        return overrides[kind]
    try:
        return _DEFAULT_TEMPLATES[kind]
    except KeyError:
        raise PromptTemplateError(
            f"Unknown prompt template kind: {kind!r}",
            hint=f"Known kinds: {', '.join(sorted(_DEFAULT_TEMPLATES))}",
        ) from None


def render_prompt(template_text: str, params: StructuredCallParams) -> str:
    """Render *template_text* with *params*.

    Raises:
        PromptTemplateError: If the template cannot be parsed or rendered.
    """
    if not isinstance(template_text, str):
        raise PromptTemplateError(
            f"prompt template must be a string, got {type(template_text).__name__}",
        )
    try:
        template = _ENV.from_string(template_text)
    except jinja2.TemplateSyntaxError as e:
        raise PromptTemplateError(
            f"failed to parse prompt template: {e}",
            hint="Templates use Jinja2 syntax, e.g. {{ prompt }}.",
        ) from e

    try:
        return template.render(**asdict(params))
    except (jinja2.TemplateError, TypeError, ValueError) as e:
        raise PromptTemplateError(f"prompt template execution failed: {e}") from e


def render_structured_call(
    overrides: Mapping[str, str] | None, params: StructuredCallParams
) -> str:
    """Select the structured-call template and render it."""
    return render_prompt(select_template(overrides, STRUCTURED_CALL), params)
