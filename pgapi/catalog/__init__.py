# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Database catalog: introspected metadata the GraphQL schema is derived from."""

from pgapi.catalog.introspector import CatalogIntrospector, pg_type_kind
from pgapi.catalog.models import (
    ColumnInfo,
    ColumnType,
    DatabaseCatalog,
    EnumInfo,
    ForeignKeyInfo,
    FunctionArgument,
    FunctionInfo,
    SmartTags,
    TableInfo,
    UniqueConstraintInfo,
)

__all__ = [
    "CatalogIntrospector",
    "pg_type_kind",
    "ColumnInfo",
    "ColumnType",
    "DatabaseCatalog",
    "EnumInfo",
    "ForeignKeyInfo",
    "FunctionArgument",
    "FunctionInfo",
    "SmartTags",
    "TableInfo",
    "UniqueConstraintInfo",
]
