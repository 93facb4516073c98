"""Tests for the schema-less Document value."""

from __future__ import annotations

import pytest

from escrow_settlement.domain.documents import Document
from escrow_settlement.domain.exceptions import ValidationFailure


class TestDocument:
    def test_typed_accessors(self) -> None:
        doc = Document({"title": "Logo", "price": 12.5, "tags": ["a", "b"], "nested": {"k": 1}})
        assert doc.get_str("title") == "Logo"
        assert doc.get_number("price") == 12.5
        assert doc.get_str_list("tags") == ["a", "b"]
        assert doc.get_document("nested").get_number("k") == 1

    def test_missing_keys_use_defaults(self) -> None:
        doc = Document()
        assert doc.get_str("title", "untitled") == "untitled"
        assert doc.get_str_list("tags") == []
        assert len(doc.get_document("nested")) == 0

    def test_type_mismatch_raises(self) -> None:
        doc = Document({"price": "twelve", "flag": True})
        with pytest.raises(ValidationFailure) as exc_info:
            doc.get_number("price")
        assert exc_info.value.field == "price"
        with pytest.raises(ValidationFailure):
            doc.get_number("flag")

    def test_non_json_values_rejected(self) -> None:
        with pytest.raises(ValidationFailure):
            Document({"when": object()})

    def test_from_json_requires_object(self) -> None:
        assert Document.from_json('{"a": 1}') == {"a": 1}
        with pytest.raises(ValidationFailure):
            Document.from_json("[1, 2]")

    def test_json_is_canonical(self) -> None:
        assert Document({"b": 1, "a": 2}).to_json() == '{"a":2,"b":1}'

    def test_coerce_keeps_documents(self) -> None:
        doc = Document({"a": 1})
        assert Document.coerce(doc) is doc
        assert Document.coerce(None) == {}
