"""
Runtime schema inference for directory records.

Pure functions only: given a batch of sparse records, compute one type tag
per field and convert values to and from their SQLite representation.
Nothing in here touches the database.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import SchemaError


Record = Dict[str, Any]

PRIMARY_KEY = "id"


class ColumnType(str, Enum):
    """Type tag inferred for a column."""
    NULL = "NULL"
    BOOLEAN = "BOOLEAN"
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"

    @property
    def sql(self) -> str:
        """Declared SQLite type. Null-only columns are stored as TEXT."""
        if self is ColumnType.NULL:
            return "TEXT"
        return self.value

    @classmethod
    def from_declared(cls, declared: Optional[str]) -> "ColumnType":
        """Map a declared column type read back from PRAGMA table_info."""
        try:
            return cls((declared or "TEXT").upper())
        except ValueError:
            return cls.TEXT


@dataclass
class Schema:
    """Ordered (field, type) pairs for one table; ``id`` is the primary key."""
    table: str
    columns: List[Tuple[str, ColumnType]] = field(default_factory=list)
    primary_key: str = PRIMARY_KEY

    @property
    def field_names(self) -> List[str]:
        return [name for name, _ in self.columns]

    def type_of(self, name: str) -> Optional[ColumnType]:
        for column, column_type in self.columns:
            if column == name:
                return column_type
        return None

    def as_dict(self) -> Dict[str, str]:
        return {name: column_type.value for name, column_type in self.columns}


def infer_type(value: Any) -> ColumnType:
    """
    Infer the type tag of a single value.

    bool is checked before int since bool is an int subclass. Floats without
    a fractional part count as INTEGER. Strings (dates included), lists and
    dicts are TEXT.
    """
    if value is None:
        return ColumnType.NULL
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, int):
        return ColumnType.INTEGER
    if isinstance(value, float):
        return ColumnType.INTEGER if value.is_integer() else ColumnType.REAL
    return ColumnType.TEXT


def resolve_types(observed: Iterable[ColumnType]) -> ColumnType:
    """Resolve the tags observed for one field across the sample set."""
    seen = {t for t in observed if t is not ColumnType.NULL}
    if not seen:
        return ColumnType.NULL
    if len(seen) == 1:
        return seen.pop()
    if seen == {ColumnType.INTEGER, ColumnType.REAL}:
        return ColumnType.REAL
    return ColumnType.TEXT


def build_schema(table: str, records: Sequence[Record], reserved: Sequence[str] = ()) -> Schema:
    """
    Build a schema from the union of fields across ``records``.

    SQLite column names are case-insensitive, so two fields that differ only
    in case cannot both become columns. Names in ``reserved`` belong to the
    caller (bookkeeping columns) and may not appear in a record.

    Raises:
        SchemaError: If ``records`` is empty or field names collide
    """
    if not records:
        raise SchemaError(f"Cannot infer schema for {table} from zero records")

    observed: Dict[str, List[ColumnType]] = {PRIMARY_KEY: []}
    for record in records:
        for name, value in record.items():
            observed.setdefault(name, []).append(infer_type(value))

    reserved_names = {name.casefold(): name for name in reserved}
    taken: Dict[str, str] = {}
    for name in observed:
        key = name.casefold()
        if key in reserved_names:
            raise SchemaError(f"Field {name!r} in {table} uses reserved column {reserved_names[key]!r}")
        clash = taken.setdefault(key, name)
        if clash != name:
            raise SchemaError(f"Fields {clash!r} and {name!r} in {table} differ only in case")

    columns = [(name, resolve_types(types)) for name, types in observed.items()]
    # The primary key is always stored as text.
    columns[0] = (PRIMARY_KEY, ColumnType.TEXT)
    return Schema(table=table, columns=columns)


def serialize_value(value: Any) -> Any:
    """Convert a record value to its SQLite representation."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


def deserialize_value(value: Any, column_type: ColumnType = ColumnType.TEXT) -> Any:
    """
    Convert a stored value back using the column's type tag.

    TEXT values that look like JSON arrays or objects are parsed; anything
    that fails to parse is returned unchanged.
    """
    if value is None:
        return None
    if column_type is ColumnType.BOOLEAN:
        return bool(value)
    if isinstance(value, str) and column_type in (ColumnType.TEXT, ColumnType.NULL):
        stripped = value.strip()
        if stripped[:1] in ("[", "{"):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


def serialize_record(schema: Schema, record: Record) -> List[Any]:
    """Serialize a record into a row ordered like ``schema.columns``."""
    return [serialize_value(record.get(name)) for name in schema.field_names]


def deserialize_row(columns: Sequence[Tuple[str, ColumnType]], row: Sequence[Any]) -> Record:
    """Rebuild a sparse record from a row, dropping NULL columns."""
    record: Record = {}
    for (name, column_type), value in zip(columns, row):
        if value is None:
            continue
        record[name] = deserialize_value(value, column_type)
    return record
