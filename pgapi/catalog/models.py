# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Introspected database metadata."""

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy import Column, MetaData, Table
from sqlalchemy import types as sa_types
from sqlalchemy.exc import CompileError

ALL_PRIVILEGES = frozenset({"select", "insert", "update", "delete"})


@dataclass(frozen=True)
class SmartTags:
    """Directives parsed from a database comment.

    A comment line starting with ``@`` is a tag, e.g.::

        @omit create,delete
        @name person
        A human being.
    """
    omit: Optional[frozenset[str]] = None  # empty set = omit everything
    name: Optional[str] = None
    description: Optional[str] = None

    def omits(self, action: str) -> bool:
        if self.omit is None:
            return False
        return not self.omit or action in self.omit

    @classmethod
    def parse(cls, comment: Optional[str]) -> "SmartTags":
        if not comment:
            return cls()

        omit = None
        name = None
        lines = []
        for line in comment.splitlines():
            stripped = line.strip()
            if not stripped.startswith("@"):
                lines.append(line)
                continue
            tag, _, value = stripped[1:].partition(" ")
            value = value.strip()
            if tag == "omit":
                omit = frozenset(v.strip() for v in value.split(",") if v.strip())
            elif tag == "name" and value:
                name = value

        description = "\n".join(lines).strip() or None
        return cls(omit=omit, name=name, description=description)


@dataclass(frozen=True)
class ColumnType:
    """Database type reduced to what GraphQL needs."""
    kind: str
    db_type: str = ""
    item: Optional["ColumnType"] = None  # for arrays
    enum_name: Optional[str] = None  # for enums

    @classmethod
    def from_sqlalchemy(cls, sa_type: sa_types.TypeEngine) -> "ColumnType":
        """Classify a reflected SQLAlchemy type."""
        db_type = _type_name(sa_type)

        if isinstance(sa_type, sa_types.ARRAY):
            return cls("array", db_type, item=cls.from_sqlalchemy(sa_type.item_type))
        if isinstance(sa_type, sa_types.Enum):
            return cls("enum", db_type, enum_name=sa_type.name)
        if isinstance(sa_type, sa_types.Boolean):
            return cls("bool", db_type)
        if isinstance(sa_type, sa_types.BigInteger):
            return cls("bigint", db_type)
        if isinstance(sa_type, sa_types.Integer):
            return cls("int", db_type)
        if isinstance(sa_type, sa_types.Float):
            return cls("float", db_type)
        if isinstance(sa_type, sa_types.Numeric):
            return cls("numeric", db_type)
        if isinstance(sa_type, sa_types.DateTime):
            return cls("datetime", db_type)
        if isinstance(sa_type, sa_types.Date):
            return cls("date", db_type)
        if isinstance(sa_type, sa_types.Time):
            return cls("time", db_type)
        if isinstance(sa_type, sa_types.Uuid):
            return cls("uuid", db_type)
        if isinstance(sa_type, sa_types.JSON):
            return cls("json", db_type)
        if isinstance(sa_type, (sa_types.LargeBinary, sa_types.BINARY, sa_types.VARBINARY)):
            return cls("binary", db_type)
        if db_type.lower() in ("uuid",):
            return cls("uuid", db_type)
        if db_type.lower() in ("json", "jsonb"):
            return cls("json", db_type)

        # text, varchar, citext, inet and anything we do not model
        return cls("text", db_type)

    def to_sqlalchemy(self) -> sa_types.TypeEngine:
        """SQLAlchemy type used when binding parameters of this kind."""
        if self.kind == "array" and self.item is not None:
            return sa_types.ARRAY(self.item.to_sqlalchemy())
        return _KIND_TO_SQLALCHEMY.get(self.kind, sa_types.String)()


_KIND_TO_SQLALCHEMY: dict[str, type[sa_types.TypeEngine]] = {
    "int": sa_types.Integer,
    "bigint": sa_types.BigInteger,
    "float": sa_types.Float,
    "numeric": sa_types.Numeric,
    "bool": sa_types.Boolean,
    "text": sa_types.String,
    "date": sa_types.Date,
    "datetime": sa_types.DateTime,
    "time": sa_types.Time,
    "uuid": sa_types.Uuid,
    "json": sa_types.JSON,
    "enum": sa_types.String,
    "binary": sa_types.LargeBinary,
}


def _type_name(sa_type: sa_types.TypeEngine) -> str:
    try:
        return str(sa_type)
    except CompileError:  # some dialect types cannot compile without a dialect
        return type(sa_type).__name__.lower()


@dataclass(frozen=True)
class ColumnInfo:
    """Metadata for a single column."""
    name: str
    type: ColumnType
    nullable: bool = True
    has_default: bool = False
    comment: Optional[str] = None
    privileges: frozenset[str] = ALL_PRIVILEGES

    @property
    def tags(self) -> SmartTags:
        return SmartTags.parse(self.comment)


@dataclass(frozen=True)
class ForeignKeyInfo:
    """Foreign key from ``columns`` to ``target_columns`` of ``target``."""
    name: Optional[str]
    columns: tuple[str, ...]
    target_schema: Optional[str]
    target: str
    target_columns: tuple[str, ...]
    comment: Optional[str] = None

    @property
    def tags(self) -> SmartTags:
        return SmartTags.parse(self.comment)


@dataclass(frozen=True)
class UniqueConstraintInfo:
    name: Optional[str]
    columns: tuple[str, ...]


@dataclass(frozen=True)
class TableInfo:
    """Full metadata for a table or view."""
    schema: Optional[str]
    name: str
    kind: str = "table"  # "table" or "view"
    comment: Optional[str] = None
    columns: tuple[ColumnInfo, ...] = ()
    primary_key: tuple[str, ...] = ()
    unique_constraints: tuple[UniqueConstraintInfo, ...] = ()
    foreign_keys: tuple[ForeignKeyInfo, ...] = ()
    # Leading columns of every index (the primary key counts as one)
    indexes: tuple[tuple[str, ...], ...] = ()
    privileges: frozenset[str] = ALL_PRIVILEGES

    @property
    def key(self) -> tuple[Optional[str], str]:
        return (self.schema, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    @property
    def is_view(self) -> bool:
        return self.kind == "view"

    @property
    def tags(self) -> SmartTags:
        return SmartTags.parse(self.comment)

    def column(self, name: str) -> ColumnInfo:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(f"{self.full_name} has no column {name!r}")

    def unique_keys(self) -> list[tuple[str, ...]]:
        """Primary key first, then unique constraints, without duplicates."""
        keys: list[tuple[str, ...]] = []
        if self.primary_key:
            keys.append(self.primary_key)
        for constraint in self.unique_constraints:
            if constraint.columns and constraint.columns not in keys:
                keys.append(constraint.columns)
        return keys

    def is_unique(self, columns: tuple[str, ...]) -> bool:
        return any(set(key) == set(columns) for key in self.unique_keys())

    def is_indexed(self, columns: tuple[str, ...]) -> bool:
        """Whether ``columns`` are the leading columns of some index."""
        n = len(columns)
        return any(
            len(index) >= n and set(index[:n]) == set(columns)
            for index in self.indexes
        )

    def to_sqlalchemy(self, metadata: MetaData) -> Table:
        """Build a SQLAlchemy Table for SQL generation (no reflection)."""
        return Table(
            self.name,
            metadata,
            *(
                Column(col.name, col.type.to_sqlalchemy(), primary_key=col.name in self.primary_key)
                for col in self.columns
            ),
            schema=self.schema,
        )


@dataclass(frozen=True)
class FunctionArgument:
    name: str
    type: ColumnType
    has_default: bool = False


@dataclass(frozen=True)
class FunctionInfo:
    """A database function exposed as a query or mutation field."""
    schema: Optional[str]
    name: str
    arguments: tuple[FunctionArgument, ...] = ()
    volatility: str = "volatile"  # "immutable", "stable" or "volatile"
    returns_set: bool = False
    return_type: Optional[ColumnType] = None  # scalar result
    return_table: Optional[tuple[Optional[str], str]] = None  # (schema, table) result
    comment: Optional[str] = None
    executable: bool = True

    @property
    def is_mutation(self) -> bool:
        return self.volatility == "volatile"

    @property
    def tags(self) -> SmartTags:
        return SmartTags.parse(self.comment)


@dataclass(frozen=True)
class EnumInfo:
    schema: Optional[str]
    name: str
    values: tuple[str, ...]
    comment: Optional[str] = None


@dataclass(frozen=True)
class DatabaseCatalog:
    """Everything the GraphQL schema is derived from."""
    dialect: str
    tables: tuple[TableInfo, ...] = ()
    functions: tuple[FunctionInfo, ...] = ()
    enums: tuple[EnumInfo, ...] = ()
    current_role: Optional[str] = None

    def table(self, schema: Optional[str], name: str) -> TableInfo:
        for table in self.tables:
            if table.name == name and (schema is None or table.schema == schema):
                return table
        raise KeyError(f"Unknown table: {schema}.{name}" if schema else f"Unknown table: {name}")

    def find_table(self, schema: Optional[str], name: str) -> Optional[TableInfo]:
        try:
            return self.table(schema, name)
        except KeyError:
            return None

    def referencing(self, target: TableInfo) -> list[tuple[TableInfo, ForeignKeyInfo]]:
        """Foreign keys from any table pointing at ``target``."""
        result = []
        for table in self.tables:
            for fk in table.foreign_keys:
                if fk.target == target.name and fk.target_schema in (None, target.schema):
                    result.append((table, fk))
        return result

    def fingerprint(self) -> str:
        """Stable hash of the structure; changes whenever the schema does."""
        payload = json.dumps(asdict(self), sort_keys=True, default=_json_default)
        return hashlib.sha256(payload.encode()).hexdigest()


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Cannot fingerprint {type(value).__name__}")
