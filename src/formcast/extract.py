"""Split raw model text into a human-readable comment and a JSON payload.

Models often explain themselves before the payload; that preamble becomes
the comment. Prose *after* the payload is not separated here: it stays in
the payload text and the lenient decoder skips it.
"""

from __future__ import annotations

from dataclasses import dataclass

_FENCE_OPEN = "```json"
_FENCE_CLOSE = "```"


@dataclass(frozen=True)
class Extraction:
    """Result of :func:`extract`."""

    comment: str
    payload: str
    #: The fence-stripped text the split was computed from.
    cleaned: str


def clean_fenced_output(text: str) -> str:
    """Trim *text* and drop a leading ```` ```json ```` and trailing ```` ``` ```` fence."""
    output = text.strip()
    output = output.removeprefix(_FENCE_OPEN)
    output = output.removesuffix(_FENCE_CLOSE)
    return output.strip()


def split_comment_and_payload(output: str) -> tuple[str, str]:
    """Return ``(comment, payload)`` for already-cleaned *output*.

    The payload starts at the first line beginning with ``{``. Without such a
    line the whole text is the comment and the payload is empty.
    """
    if output.startswith("{"):
        return "", output

    lines = output.split("\n")
    for i, line in enumerate(lines):
        if line.startswith("{"):
            comment = "\n".join(lines[:i]).strip()
            payload = "\n".join(lines[i:])
            return comment, payload

    return output, ""


def extract(raw_text: str) -> Extraction:
    """Clean *raw_text* and split it into comment and payload."""
    cleaned = clean_fenced_output(raw_text)
    comment, payload = split_comment_and_payload(cleaned)
    return Extraction(comment=comment, payload=payload, cleaned=cleaned)
