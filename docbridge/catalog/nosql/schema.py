# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Schema inference over schemaless JSON documents.

The schema of a document set is the structural union of the shapes of its
documents: every field seen in any document appears once, in order of first
appearance, with a type wide enough for every value seen.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

NULL = "null"
BOOLEAN = "boolean"
INTEGER = "integer"
FLOAT = "float"
STRING = "string"
ARRAY = "array"
STRUCT = "struct"


@dataclass(frozen=True)
class DataType:
    """Inferred type. Structs carry their fields, arrays their element type."""
    name: str
    fields: tuple["Field", ...] = ()
    element: Optional["DataType"] = None

    def simple_string(self) -> str:
        if self.name == STRUCT:
            inner = ",".join(f"{f.name}:{f.data_type.simple_string()}" for f in self.fields)
            return f"struct<{inner}>"
        if self.name == ARRAY:
            element = self.element.simple_string() if self.element else NULL
            return f"array<{element}>"
        return self.name

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"type": self.name}
        if self.name == STRUCT:
            result["fields"] = [f.to_dict() for f in self.fields]
        if self.name == ARRAY and self.element is not None:
            result["element"] = self.element.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict | str) -> "DataType":
        if isinstance(data, str):
            return cls(name=data)
        return cls(
            name=data["type"],
            fields=tuple(Field.from_dict(f) for f in data.get("fields", [])),
            element=cls.from_dict(data["element"]) if data.get("element") else None,
        )


@dataclass(frozen=True)
class Field:
    """A named, typed column of a schema."""
    name: str
    data_type: DataType
    nullable: bool = True

    def to_dict(self) -> dict:
        return {"name": self.name, "nullable": self.nullable, **self.data_type.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "Field":
        return cls(
            name=data["name"],
            data_type=DataType.from_dict(data),
            nullable=data.get("nullable", True),
        )


@dataclass(frozen=True)
class Schema:
    """Ordered, immutable set of uniquely named fields."""
    fields: tuple[Field, ...] = field(default_factory=tuple)

    def __post_init__(self):
        names = [f.name for f in self.fields]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate field names in schema: {sorted(duplicates)}")

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self):
        return iter(self.fields)

    def __contains__(self, name: str) -> bool:
        return name in self.names

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def field(self, name: str) -> Field:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"No field named '{name}'. Available: {self.names}")

    def select(self, columns: Iterable[str]) -> "Schema":
        """Project the schema onto the given columns, in the given order."""
        return Schema(tuple(self.field(c) for c in columns))

    def simple_string(self) -> str:
        return DataType(STRUCT, self.fields).simple_string()

    def to_dict(self) -> dict:
        return {"fields": [f.to_dict() for f in self.fields]}

    @classmethod
    def from_dict(cls, data: dict | list) -> "Schema":
        """Build a schema from ``{"fields": [...]}`` or a bare field list."""
        fields = data["fields"] if isinstance(data, dict) else data
        return cls(tuple(Field.from_dict(f) for f in fields))


def infer_value_type(value: Any) -> DataType:
    """Infer the type of a single JSON value."""
    if value is None:
        return DataType(NULL)
    elif isinstance(value, bool):
        return DataType(BOOLEAN)
    elif isinstance(value, int):
        return DataType(INTEGER)
    elif isinstance(value, float):
        return DataType(FLOAT)
    elif isinstance(value, str):
        return DataType(STRING)
    elif isinstance(value, (list, tuple)):
        element = DataType(NULL)
        for item in value:
            element = merge_types(element, infer_value_type(item))
        return DataType(ARRAY, element=element)
    elif isinstance(value, dict):
        return DataType(STRUCT, fields=_infer_fields([value]))
    else:
        # Dates, decimals and other non-JSON values are read back as text
        return DataType(STRING)


def merge_types(left: DataType, right: DataType) -> DataType:
    """Smallest type that can hold values of both ``left`` and ``right``."""
    if left.name == NULL:
        return right
    if right.name == NULL:
        return left
    if {left.name, right.name} == {INTEGER, FLOAT}:
        return DataType(FLOAT)
    if left.name != right.name:
        return DataType(STRING)
    if left.name == STRUCT:
        return DataType(STRUCT, fields=_merge_fields(left.fields, right.fields))
    if left.name == ARRAY:
        return DataType(
            ARRAY,
            element=merge_types(left.element or DataType(NULL), right.element or DataType(NULL)),
        )
    return left


def _merge_fields(left: tuple[Field, ...], right: tuple[Field, ...]) -> tuple[Field, ...]:
    merged: dict[str, Field] = {f.name: f for f in left}
    right_names = {f.name for f in right}
    for f in right:
        if f.name in merged:
            existing = merged[f.name]
            merged[f.name] = Field(
                f.name,
                merge_types(existing.data_type, f.data_type),
                existing.nullable or f.nullable,
            )
        else:
            merged[f.name] = Field(f.name, f.data_type, True)
    # Fields missing from one side are nullable
    for name, f in merged.items():
        if name not in right_names and not f.nullable:
            merged[name] = Field(name, f.data_type, True)
    return tuple(merged.values())


def _infer_fields(documents: Iterable[dict]) -> tuple[Field, ...]:
    types: dict[str, DataType] = {}
    seen_in: dict[str, int] = {}
    null_seen: set[str] = set()
    count = 0

    for doc in documents:
        count += 1
        for key, value in doc.items():
            value_type = infer_value_type(value)
            if value is None:
                null_seen.add(key)
            types[key] = merge_types(types.get(key, DataType(NULL)), value_type)
            seen_in[key] = seen_in.get(key, 0) + 1

    return tuple(
        Field(name, data_type, nullable=name in null_seen or seen_in[name] < count)
        for name, data_type in types.items()
    )


def infer_schema(documents: Iterable[dict]) -> Schema:
    """Infer a schema as the structural union of ``documents``.

    An empty document set yields a schema with no fields.
    """
    return Schema(_infer_fields(documents))
