# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Fixed GraphQL types shared by every derived schema."""

import base64
import binascii
import datetime
import json
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, NewType, Optional

import strawberry
from strawberry.scalars import JSON, Base64

from pgapi.catalog.models import ColumnType


# ============== Scalars ==============

BigInt = strawberry.scalar(
    NewType("BigInt", int),
    name="BigInt",
    description="A signed eight-byte integer. Serialized as a string to avoid precision loss.",
    serialize=lambda value: str(value),
    parse_value=lambda value: int(value),
)

BigFloat = strawberry.scalar(
    NewType("BigFloat", Decimal),
    name="BigFloat",
    description="An arbitrary precision number. Serialized as a string.",
    serialize=lambda value: str(value),
    parse_value=lambda value: Decimal(str(value)),
)

Cursor = strawberry.scalar(
    NewType("Cursor", str),
    name="Cursor",
    description="An opaque position within a connection.",
    serialize=lambda value: str(value),
    parse_value=lambda value: str(value),
)

_SCALARS: dict[str, Any] = {
    "int": int,
    "bigint": BigInt,
    "float": float,
    "numeric": BigFloat,
    "bool": bool,
    "text": str,
    "date": datetime.date,
    "datetime": datetime.datetime,
    "time": datetime.time,
    "uuid": uuid.UUID,
    "binary": Base64,
}

# Kinds that can be compared with = and sorted
COMPARABLE_KINDS = frozenset({
    "int", "bigint", "float", "numeric", "bool", "text",
    "date", "datetime", "time", "uuid", "enum",
})


def python_type(
    column_type: ColumnType,
    enums: dict[str, type[Enum]],
    dynamic_json: bool = True,
) -> Any:
    """Annotation used for values of ``column_type`` (without nullability)."""
    if column_type.kind == "array" and column_type.item is not None:
        return list[Optional[python_type(column_type.item, enums, dynamic_json)]]
    if column_type.kind == "enum" and column_type.enum_name in enums:
        return enums[column_type.enum_name]
    if column_type.kind == "json":
        return JSON if dynamic_json else str
    return _SCALARS.get(column_type.kind, str)


def to_graphql(
    value: Any,
    column_type: ColumnType,
    enums: dict[str, type[Enum]],
    dynamic_json: bool = True,
) -> Any:
    """Convert a database value to what the GraphQL type serializes."""
    if value is None:
        return None
    if column_type.kind == "array" and column_type.item is not None:
        return [to_graphql(item, column_type.item, enums, dynamic_json) for item in value]
    if column_type.kind == "enum" and column_type.enum_name in enums:
        return enums[column_type.enum_name](value)
    if column_type.kind == "json":
        return value if dynamic_json else json.dumps(value)
    if column_type.kind == "bigint":
        return int(value)
    return value


def from_graphql(value: Any, column_type: ColumnType, dynamic_json: bool = True) -> Any:
    """Convert a parsed GraphQL input value to a database parameter."""
    if value is None:
        return None
    if column_type.kind == "array" and column_type.item is not None:
        return [from_graphql(item, column_type.item, dynamic_json) for item in value]
    if isinstance(value, Enum):
        return value.value
    if column_type.kind == "json" and not dynamic_json and isinstance(value, str):
        return json.loads(value)
    return value


# ============== Cursors ==============

_CURSOR_PREFIX = "cursor:"


def encode_cursor(offset: int) -> str:
    return base64.b64encode(f"{_CURSOR_PREFIX}{offset}".encode()).decode()


def decode_cursor(cursor: str) -> int:
    """Row offset encoded in ``cursor``.

    Raises:
        ValueError: If the cursor was not produced by ``encode_cursor``
    """
    try:
        raw = base64.b64decode(cursor.encode(), validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid cursor: {cursor!r}") from e
    if not raw.startswith(_CURSOR_PREFIX):
        raise ValueError(f"Invalid cursor: {cursor!r}")
    return int(raw[len(_CURSOR_PREFIX):])


# ============== Object types ==============

@strawberry.type(description="Information about pagination in a connection.")
class PageInfo:
    has_next_page: bool
    has_previous_page: bool
    start_cursor: Optional[Cursor] = None
    end_cursor: Optional[Cursor] = None


@strawberry.type(description="A notification received on a subscribed topic.")
class ListenPayload:
    event: str
    payload: Optional[str] = None
