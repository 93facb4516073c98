"""Schema-less structured documents (terms, proof metadata, device info).

A Document wraps a JSON object validated once at the boundary. Core logic
reads fields through typed accessors that raise ValidationFailure on a
type mismatch instead of passing untyped maps around.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import JsonValue, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from escrow_settlement.domain.exceptions import ValidationFailure

_OBJECT_ADAPTER: TypeAdapter[dict[str, JsonValue]] = TypeAdapter(dict[str, JsonValue])


class Document(Mapping[str, JsonValue]):
    """Immutable JSON object with validated accessors."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        try:
            self._data: dict[str, JsonValue] = _OBJECT_ADAPTER.validate_python(dict(data or {}))
        except PydanticValidationError as err:
            raise ValidationFailure(f"Document is not valid JSON: {err}", field="document") from err

    @classmethod
    def coerce(cls, value: Document | Mapping[str, Any] | None) -> Document:
        if isinstance(value, Document):
            return value
        return cls(value)

    @classmethod
    def from_json(cls, raw: str) -> Document:
        try:
            return cls(_OBJECT_ADAPTER.validate_json(raw))
        except PydanticValidationError as err:
            raise ValidationFailure(f"Document is not a JSON object: {err}", field="document") from err

    def __getitem__(self, key: str) -> JsonValue:
        return self._data[key]

    def __iter__(self):  # noqa: ANN204
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Document):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Document({self._data!r})"

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self._data.get(key)
        if value is None:
            return default
        if not isinstance(value, str):
            raise ValidationFailure(f"{key!r} must be a string", field=key)
        return value

    def get_number(self, key: str, default: float | None = None) -> float | None:
        value = self._data.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ValidationFailure(f"{key!r} must be a number", field=key)
        return value

    def get_str_list(self, key: str) -> list[str]:
        value = self._data.get(key)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ValidationFailure(f"{key!r} must be a list of strings", field=key)
        return list(value)

    def get_document(self, key: str) -> Document:
        value = self._data.get(key)
        if value is None:
            return Document()
        if not isinstance(value, dict):
            raise ValidationFailure(f"{key!r} must be an object", field=key)
        return Document(value)

    def to_dict(self) -> dict[str, JsonValue]:
        return json.loads(self.to_json())

    def to_json(self) -> str:
        return json.dumps(self._data, sort_keys=True, separators=(",", ":"))
