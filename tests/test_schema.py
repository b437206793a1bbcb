"""Tests for runtime schema inference and value conversion."""

import pytest

from directory_sync.errors import SchemaError
from directory_sync.services.schema import (
    ColumnType,
    build_schema,
    deserialize_row,
    deserialize_value,
    infer_type,
    resolve_types,
    serialize_record,
    serialize_value,
)


class TestInferType:
    def test_bool_is_not_integer(self):
        assert infer_type(True) is ColumnType.BOOLEAN
        assert infer_type(False) is ColumnType.BOOLEAN

    def test_numbers_split_on_fractional_part(self):
        assert infer_type(5) is ColumnType.INTEGER
        assert infer_type(5.0) is ColumnType.INTEGER
        assert infer_type(5.5) is ColumnType.REAL

    def test_strings_arrays_and_objects_are_text(self):
        assert infer_type("2024-01-01T00:00:00Z") is ColumnType.TEXT
        assert infer_type(["a"]) is ColumnType.TEXT
        assert infer_type({"k": 1}) is ColumnType.TEXT

    def test_none_is_null(self):
        assert infer_type(None) is ColumnType.NULL
        assert ColumnType.NULL.sql == "TEXT"


class TestResolveTypes:
    def test_nulls_do_not_vote(self):
        assert resolve_types([ColumnType.NULL, ColumnType.INTEGER]) is ColumnType.INTEGER

    def test_integer_and_real_widen_to_real(self):
        assert resolve_types([ColumnType.INTEGER, ColumnType.REAL]) is ColumnType.REAL

    def test_other_mixes_fall_back_to_text(self):
        assert resolve_types([ColumnType.BOOLEAN, ColumnType.INTEGER]) is ColumnType.TEXT

    def test_only_nulls(self):
        assert resolve_types([ColumnType.NULL, ColumnType.NULL]) is ColumnType.NULL


class TestBuildSchema:
    def test_empty_batch_raises(self):
        with pytest.raises(SchemaError):
            build_schema("users", [])

    def test_field_union_across_records(self):
        schema = build_schema("users", [
            {"id": "1", "displayName": "A"},
            {"id": "2", "displayName": "B", "jobTitle": "Eng"},
        ])
        assert schema.field_names == ["id", "displayName", "jobTitle"]
        assert schema.primary_key == "id"
        assert serialize_record(schema, {"id": "1", "displayName": "A"}) == ["1", "A", None]

    def test_type_conflict_resolves_to_text(self):
        schema = build_schema("t", [{"id": "1", "v": 5}, {"id": "2", "v": "five"}])
        assert schema.type_of("v") is ColumnType.TEXT

    def test_id_first_and_text(self):
        schema = build_schema("t", [{"name": "x", "id": 7}])
        assert schema.columns[0] == ("id", ColumnType.TEXT)
        assert schema.as_dict() == {"id": "TEXT", "name": "TEXT"}

    def test_case_duplicate_fields_raise(self):
        with pytest.raises(SchemaError, match="differ only in case"):
            build_schema("t", [{"id": "1", "mail": "a@x.com"}, {"id": "2", "Mail": "b@x.com"}])

    def test_field_matching_primary_key_case_insensitively_raises(self):
        with pytest.raises(SchemaError):
            build_schema("t", [{"id": "1", "ID": "dup"}])

    @pytest.mark.parametrize("name", ["syncedAt", "SYNCEDAT"])
    def test_reserved_column_raises(self, name):
        with pytest.raises(SchemaError, match="reserved"):
            build_schema("t", [{"id": "1", name: "x"}], reserved=("syncedAt",))

    def test_boolean_column(self):
        schema = build_schema("t", [{"id": "1", "accountEnabled": True}, {"id": "2"}])
        assert schema.type_of("accountEnabled") is ColumnType.BOOLEAN


@pytest.mark.parametrize("value", [True, False, 42, 3.25, "plain", ["a", "b"], {"k": [1, 2]}, None])
def test_value_survives_serialization(value):
    stored = serialize_value(value)
    assert deserialize_value(stored, infer_type(value)) == value


def test_serialize_value_shapes():
    assert serialize_value(True) == 1
    assert serialize_value(False) == 0
    assert serialize_value({"a": 1}) == '{"a": 1}'


def test_malformed_json_text_is_returned_unchanged():
    assert deserialize_value("[not json", ColumnType.TEXT) == "[not json"


def test_boolean_coercion_follows_column_type_not_name():
    assert deserialize_value(1, ColumnType.BOOLEAN) is True
    # An integer column named like a flag stays an integer.
    assert deserialize_value(1, ColumnType.INTEGER) == 1
    assert deserialize_value(1, ColumnType.INTEGER) is not True


def test_deserialize_row_drops_nulls():
    columns = [("id", ColumnType.TEXT), ("mail", ColumnType.TEXT), ("accountEnabled", ColumnType.BOOLEAN)]
    assert deserialize_row(columns, ("1", None, 0)) == {"id": "1", "accountEnabled": False}
