from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Module for structured capability outputs: fence cleanup, JSON parsing and
validation against a caller-declared shape (a JSON-schema dict or a pydantic
model class).
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import AIBadInputError
from .types import JSONSchema
from .utils import clamp_str, strip_code_fence

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PREVIEW_CHARS = 200


@dataclass(frozen=True, slots=True)
class StructuredResult(Generic[T]):
    value: T
    raw_text: str


def is_model_schema(schema: object) -> bool:
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def response_constraint(schema: JSONSchema | type[BaseModel] | None) -> JSONSchema | None:
    """The JSON schema a provider should constrain its output to."""
    if schema is None:
        return None
    if is_model_schema(schema):
        return schema.model_json_schema()
    return schema


def parse_json_text(raw_text: str) -> Any:
    """
    Parse model output as JSON, first with fence markers stripped, then the
    untouched text. Raises `AIBadInputError` carrying the text when both fail.
    """
    text = raw_text if isinstance(raw_text, str) else str(raw_text)
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, ValueError, RecursionError):
        pass

    try:
        return json.loads(text.strip())
    except (json.JSONDecodeError, ValueError, RecursionError) as e:
        logger.error(
            "JSON parse failed from model output: %s",
            clamp_str(text.strip(), _PREVIEW_CHARS),
        )
        raise AIBadInputError(
            f"Model output is not valid JSON: {e}",
            cause=e,
            details={"raw_text": text},
        ) from e


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "null": lambda v: v is None,
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
}


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _validate_object(value: dict[str, Any], schema: JSONSchema, path: str) -> str | None:
    required = schema.get("required") or []
    if isinstance(required, list):
        for key in required:
            if key not in value:
                return f"{path}: missing required key '{key}'"

    properties = schema.get("properties") or {}
    if isinstance(properties, dict):
        for key, sub in properties.items():
            if key in value and isinstance(sub, dict):
                reason = _check_node(value[key], sub, f"{path}.{key}")
                if reason is not None:
                    return reason

    additional = schema.get("additionalProperties")
    if additional is False or isinstance(additional, dict):
        declared = set(properties) if isinstance(properties, dict) else set()
        for key in value:
            if key in declared:
                continue
            if additional is False:
                return f"{path}: unexpected key '{key}'"
            reason = _check_node(value[key], additional, f"{path}.{key}")
            if reason is not None:
                return reason
    return None


def _validate_array(value: list[Any], schema: JSONSchema, path: str) -> str | None:
    items = schema.get("items")
    if isinstance(items, list):
        if len(value) < len(items):
            return f"{path}: expected at least {len(items)} items, got {len(value)}"
        for idx, sub in enumerate(items):
            if isinstance(sub, dict):
                reason = _check_node(value[idx], sub, f"{path}[{idx}]")
                if reason is not None:
                    return reason
        return None

    if isinstance(items, dict):
        for idx, element in enumerate(value):
            reason = _check_node(element, items, f"{path}[{idx}]")
            if reason is not None:
                return reason
    return None


def validate_schema(value: Any, schema: JSONSchema | None, path: str = "$") -> str | None:
    """
    Recursively validate `value` against a JSON-schema subset.

    Returns `None` when valid, otherwise a human-readable, path-qualified
    reason. A node without `type` (or with a type we don't model) accepts
    anything. Values nested deeper than the interpreter can recurse are
    rejected.
    """
    try:
        return _check_node(value, schema, path)
    except RecursionError:
        return f"{path}: value is nested too deeply to validate"


def _check_node(value: Any, schema: JSONSchema | None, path: str) -> str | None:
    if not schema:
        return None

    declared = schema.get("type")
    if declared is None:
        return None

    types = declared if isinstance(declared, list) else [declared]
    known = [t for t in types if t in _TYPE_CHECKS]
    if not known:
        return None

    matched = [t for t in known if _TYPE_CHECKS[t](value)]
    if not matched:
        expected = " or ".join(known)
        return f"{path}: expected {expected}, got {_type_name(value)}"

    if "object" in matched:
        return _validate_object(value, schema, path)
    if "array" in matched:
        return _validate_array(value, schema, path)
    return None


def validate_value(
    value: Any,
    schema: JSONSchema | type[BaseModel] | None,
    *,
    raw_text: str = "",
) -> Any:
    """Validate a parsed value; returns it (or the pydantic model instance)."""
    if schema is None:
        return value

    if is_model_schema(schema):
        try:
            return schema.model_validate(value)
        except (ValidationError, RecursionError) as e:
            raise AIBadInputError(
                f"JSON does not conform to schema: {e}",
                cause=e,
                details={"raw_text": raw_text},
            ) from e

    reason = validate_schema(value, schema)
    if reason is not None:
        logger.warning("JSON schema validation failed: %s", reason)
        raise AIBadInputError(
            f"JSON does not conform to schema: {reason}",
            details={"raw_text": raw_text, "reason": reason},
        )
    return value


def parse_structured(
    raw_text: str,
    schema: JSONSchema | type[BaseModel] | None = None,
) -> StructuredResult[Any]:
    """Parse and validate model output; `raw_text` is kept on success too."""
    value = parse_json_text(raw_text)
    return StructuredResult(
        value=validate_value(value, schema, raw_text=raw_text),
        raw_text=raw_text,
    )
