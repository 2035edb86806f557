"""Output shapes: describe a target type to the model, decode its reply.

Describing
----------
A shape that exposes a callable ``describe_type()`` is described verbatim by
it. This is the escape hatch for recursive or otherwise non-trivial shapes.

Everything else is described by example: a zero-valued instance serialized as
compact JSON. This is not a formal schema. Optional fields render as ``null``
and containers render empty, so nested structure behind an optional field or
inside a list is not shown to the model. Reach for ``describe_type()`` when
that matters.

Decoding
--------
Decoding is lenient: only the leading well-formed JSON value of the payload
is read and anything after it (trailing chatter is common) is ignored. The
value is then validated against the shape with pydantic.
"""

from __future__ import annotations

from collections import abc
import dataclasses
import datetime
import decimal
import enum
import functools
import json
import types
import typing
from typing import Any, Literal, Union
import uuid

from pydantic import BaseModel, TypeAdapter, ValidationError

from formcast.errors import NoStructuredOutputError, OutputParseError, OutputShapeError

_DECODER = json.JSONDecoder()

_SCALAR_ZEROS: dict[type, Any] = {
    str: "",
    bytes: "",
    bool: False,
    int: 0,
    float: 0.0,
    decimal.Decimal: 0,
    datetime.datetime: datetime.datetime.min.isoformat(),
    datetime.date: datetime.date.min.isoformat(),
    datetime.time: datetime.time.min.isoformat(),
    uuid.UUID: str(uuid.UUID(int=0)),
}

_LIST_ORIGINS = {list, set, frozenset, tuple}


def describe_output(output_type: Any) -> str:
    """Return the text that tells the model what payload to produce.

    Raises:
        OutputShapeError: If the shape cannot be serialized by example, or
            its zero value is not a JSON object.
    """
    describe = getattr(output_type, "describe_type", None)
    if callable(describe):
        return str(describe())

    try:
        sample = zero_value(output_type)
        text = json.dumps(sample, separators=(",", ":"))
    except (TypeError, ValueError, NameError) as e:
        raise OutputShapeError(
            f"cannot render output spec for {_type_name(output_type)}: {e}",
            hint="Use a pydantic model, dataclass or TypedDict, or add describe_type().",
        ) from e

    if not isinstance(sample, dict):
        raise OutputShapeError(
            f"output type {_type_name(output_type)} does not serialize to a JSON object",
            hint="Wrap the value in a model so the reply starts with '{'.",
        )
    return text


def zero_value(tp: Any, _seen: frozenset[Any] = frozenset()) -> Any:
    """Return the JSON-ready zero value of *tp*.

    Raises:
        TypeError: If *tp* has no JSON representation.
    """
    if tp is Any or tp is object or tp is None or tp is type(None):
        return None

    origin = typing.get_origin(tp)
    if origin is typing.Annotated:
        return zero_value(typing.get_args(tp)[0], _seen)
    if origin is Literal:
        return typing.get_args(tp)[0]
    if origin is Union or origin is types.UnionType:
        args = typing.get_args(tp)
        if type(None) in args:
            return None
        return zero_value(args[0], _seen)
    if origin in _LIST_ORIGINS or _is_subclass(origin, abc.Sequence):
        return []
    if origin is dict or _is_subclass(origin, abc.Mapping):
        return {}

    if not isinstance(tp, type):
        raise TypeError(f"unsupported type annotation: {tp!r}")

    if tp in _seen:
        # Recursive reference: a nil pointer in the example.
        return None
    seen = _seen | {tp}

    if issubclass(tp, enum.Enum):
        members = list(tp)
        return members[0].value if members else None
    if issubclass(tp, BaseModel):
        return {
            field.alias or name: zero_value(field.annotation, seen)
            for name, field in tp.model_fields.items()
        }
    if dataclasses.is_dataclass(tp):
        hints = typing.get_type_hints(tp, include_extras=True)
        return {f.name: zero_value(hints[f.name], seen) for f in dataclasses.fields(tp)}
    if typing.is_typeddict(tp):
        hints = typing.get_type_hints(tp, include_extras=True)
        return {key: zero_value(hint, seen) for key, hint in hints.items()}

    for scalar, zero in _SCALAR_ZEROS.items():
        if issubclass(tp, scalar):
            return zero
    if issubclass(tp, (list, set, frozenset, tuple)):
        return []
    if issubclass(tp, dict):
        return {}
    raise TypeError(f"{_type_name(tp)} is not representable as JSON")


def decode_output(output_type: type[Any], payload: str, raw_text: str) -> Any:
    """Decode *payload* into an instance of *output_type*.

    Args:
        output_type: Target shape.
        payload: Payload text as split off by the extractor.
        raw_text: The model's full output, attached to errors for diagnosis.

    Raises:
        NoStructuredOutputError: If *payload* is empty.
        OutputParseError: If the leading value is not JSON or does not
            validate against *output_type*.
    """
    if not payload.strip():
        raise NoStructuredOutputError(
            f"no JSON output found in response (output was: {raw_text})",
            raw_text=raw_text,
            hint="The model replied without a line starting with '{'.",
        )

    try:
        value, _ = _DECODER.raw_decode(payload.lstrip())
    except json.JSONDecodeError as e:
        raise OutputParseError(
            f"failed to parse JSON output: {e} (output was: {raw_text})",
            raw_text=raw_text,
        ) from e

    try:
        return _adapter(output_type).validate_python(value)
    except ValidationError as e:
        raise OutputParseError(
            f"failed to parse JSON output: {e} (output was: {raw_text})",
            raw_text=raw_text,
        ) from e


@functools.cache
def _adapter(output_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(output_type)


def _is_subclass(origin: Any, base: Any) -> bool:
    return isinstance(origin, type) and issubclass(origin, base)


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)
