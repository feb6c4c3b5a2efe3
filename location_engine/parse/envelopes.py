"""Ordered shape matchers for the location service's response envelopes.

The backend answers with several envelope shapes depending on endpoint and
version. Each shape is described by a JSON Schema; the first matcher whose
schema accepts the payload decides how the body is unwrapped. A payload that
no matcher accepts is a :class:`MalformedResponseError`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

import jsonschema
from pydantic import ValidationError

from location_engine.errors import MalformedResponseError, NotFoundError
from location_engine.storage.models import CitySuggestion, LocationRecord

_RECORD = {"type": "object", "required": ["city"], "properties": {"city": {"type": "string"}}}


@dataclass
class ShapeMatcher:
    """A named envelope shape and the function that unwraps it."""

    name: str
    schema: Dict[str, Any]
    unwrap: Callable[[Any], Any]
    _validator: jsonschema.Draft202012Validator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._validator = jsonschema.Draft202012Validator(self.schema)

    def matches(self, payload: Any) -> bool:
        return self._validator.is_valid(payload)


def _failure(payload: Dict[str, Any]) -> Any:
    raise NotFoundError(payload.get("message"))


FAILURE = ShapeMatcher(
    name="success_false",
    schema={"type": "object", "required": ["success"], "properties": {"success": {"const": False}}},
    unwrap=_failure,
)

SEARCH_SHAPES: List[ShapeMatcher] = [
    FAILURE,
    ShapeMatcher(name="bare_array", schema={"type": "array"}, unwrap=lambda payload: payload),
    ShapeMatcher(
        name="data_array",
        schema={
            "type": "object",
            "required": ["data"],
            "properties": {"data": {"type": "array"}, "success": {"const": True}},
        },
        unwrap=lambda payload: payload["data"],
    ),
    ShapeMatcher(
        name="nested_data_array",
        schema={
            "type": "object",
            "required": ["data"],
            "properties": {
                "data": {
                    "type": "object",
                    "required": ["data"],
                    "properties": {"data": {"type": "array"}},
                }
            },
        },
        unwrap=lambda payload: payload["data"]["data"],
    ),
]

RESOLVE_SHAPES: List[ShapeMatcher] = [
    FAILURE,
    ShapeMatcher(
        name="null_data",
        schema={"type": "object", "required": ["data"], "properties": {"data": {"type": "null"}}},
        unwrap=_failure,
    ),
    ShapeMatcher(
        name="data_record",
        schema={"type": "object", "required": ["data"], "properties": {"data": _RECORD}},
        unwrap=lambda payload: payload["data"],
    ),
    ShapeMatcher(
        name="nested_data_record",
        schema={
            "type": "object",
            "required": ["data"],
            "properties": {
                "data": {"type": "object", "required": ["data"], "properties": {"data": _RECORD}}
            },
        },
        unwrap=lambda payload: payload["data"]["data"],
    ),
    ShapeMatcher(name="bare_record", schema=_RECORD, unwrap=lambda payload: payload),
]


def unwrap(payload: Any, shapes: Sequence[ShapeMatcher]) -> Any:
    """Return the body of ``payload`` using the first matching shape."""
    for shape in shapes:
        if shape.matches(payload):
            return shape.unwrap(payload)
    raise MalformedResponseError()


def parse_suggestions(payload: Any) -> List[CitySuggestion]:
    """Flatten a search envelope into ordered suggestions."""
    items = unwrap(payload, SEARCH_SHAPES)
    try:
        return [CitySuggestion.model_validate(item) for item in items]
    except ValidationError as exc:
        raise MalformedResponseError(f"Invalid suggestion row: {exc.errors()[0]['msg']}") from exc


def parse_location(payload: Any) -> LocationRecord:
    """Extract the canonical record from a resolve envelope."""
    body = unwrap(payload, RESOLVE_SHAPES)
    try:
        return LocationRecord.model_validate(body)
    except ValidationError as exc:
        raise MalformedResponseError(f"Invalid location record: {exc.errors()[0]['msg']}") from exc
