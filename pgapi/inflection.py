# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""GraphQL naming rules for database objects."""

import re
from functools import lru_cache
from typing import Optional

from lemminflect import getInflection, getLemma

from pgapi.catalog.models import ColumnInfo, EnumInfo, ForeignKeyInfo, FunctionInfo, TableInfo

_WORD_BOUNDARY = re.compile(r"[^0-9A-Za-z]+|(?<=[a-z0-9])(?=[A-Z])")


def words(name: str) -> list[str]:
    """Split snake_case, kebab-case, spaced or camelCase names into lowercase words."""
    return [w.lower() for w in _WORD_BOUNDARY.split(name) if w]


def camel(name: str) -> str:
    parts = words(name)
    if not parts:
        return "_"
    result = parts[0] + "".join(p.capitalize() for p in parts[1:])
    return f"_{result}" if result[0].isdigit() else result


def pascal(name: str) -> str:
    result = "".join(p.capitalize() for p in words(name))
    if not result:
        return "_"
    return f"_{result}" if result[0].isdigit() else result


def constant(name: str) -> str:
    """UPPER_SNAKE form used for enum values."""
    result = "_".join(w.upper() for w in words(name))
    if not result:
        return "_EMPTY_"
    return f"_{result}" if result[0].isdigit() else result


@lru_cache(maxsize=4096)
def singularize(word: str) -> str:
    lemma = getLemma(word, upos="NOUN")
    return lemma[0] if lemma else word


@lru_cache(maxsize=4096)
def pluralize(word: str) -> str:
    plural = getInflection(singularize(word), tag="NNS")
    return plural[0] if plural else f"{word}s"


def _inflect_last(name: str, fn) -> str:
    parts = words(name)
    if not parts:
        return name
    parts[-1] = fn(parts[-1])
    return "_".join(parts)


def singular(name: str) -> str:
    return _inflect_last(name, singularize)


def plural(name: str) -> str:
    return _inflect_last(name, pluralize)


def _by(columns: tuple[str, ...]) -> str:
    return "By" + "And".join(pascal(c) for c in columns)


class Inflector:
    """Default naming: ``allUsers``, ``userById``, ``postsByAuthorId``.

    Every GraphQL type, field and argument name goes through one of these
    methods, so plugins can restyle the whole API by overriding them.
    """

    # ============== Types ==============

    def base_name(self, table: TableInfo) -> str:
        return table.tags.name or table.name

    def table_type(self, table: TableInfo) -> str:
        return pascal(singular(self.base_name(table)))

    def connection_type(self, table: TableInfo) -> str:
        return pascal(plural(self.base_name(table))) + "Connection"

    def edge_type(self, table: TableInfo) -> str:
        return pascal(plural(self.base_name(table))) + "Edge"

    def condition_type(self, table: TableInfo) -> str:
        return self.table_type(table) + "Condition"

    def order_by_type(self, table: TableInfo) -> str:
        return pascal(plural(self.base_name(table))) + "OrderBy"

    def input_type(self, table: TableInfo) -> str:
        return self.table_type(table) + "Input"

    def patch_type(self, table: TableInfo) -> str:
        return self.table_type(table) + "Patch"

    def enum_type(self, enum: EnumInfo) -> str:
        return pascal(enum.name)

    def enum_value(self, value: str) -> str:
        return constant(value)

    # ============== Fields ==============

    def column(self, column: ColumnInfo) -> str:
        return column.tags.name or camel(column.name)

    def order_by_value(self, column: ColumnInfo, ascending: bool) -> str:
        return constant(column.name) + ("_ASC" if ascending else "_DESC")

    def all_rows(self, table: TableInfo) -> str:
        return "all" + pascal(plural(self.base_name(table)))

    def row_by_unique(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        return camel(singular(self.base_name(table))) + _by(columns)

    def single_relation(self, table: TableInfo, fk: ForeignKeyInfo, target: TableInfo) -> str:
        """Forward relation from ``table`` to the row ``fk`` points at."""
        return fk.tags.name or camel(singular(self.base_name(target))) + _by(fk.columns)

    def many_relation(
        self, source: TableInfo, fk: ForeignKeyInfo, target: TableInfo, unambiguous: bool
    ) -> str:
        """Backward relation from ``target`` to the rows of ``source`` pointing at it."""
        return camel(plural(self.base_name(source))) + _by(fk.columns)

    def single_backward_relation(
        self, source: TableInfo, fk: ForeignKeyInfo, target: TableInfo, unambiguous: bool
    ) -> str:
        return camel(singular(self.base_name(source))) + _by(fk.columns)

    def function(self, function: FunctionInfo) -> str:
        return function.tags.name or camel(function.name)

    def argument(self, name: str) -> str:
        return camel(name)

    # ============== Mutations ==============

    def create_mutation(self, table: TableInfo) -> str:
        return "create" + self.table_type(table)

    def update_mutation(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        return "update" + self.table_type(table) + _by(columns)

    def delete_mutation(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        return "delete" + self.table_type(table) + _by(columns)


class WrappingInflector(Inflector):
    """Forwards every name to the inflector it wraps.

    Plugins subclass this and override only the names they restyle, so
    naming from earlier plugins survives for everything else.
    """

    def __init__(self, base: Optional[Inflector] = None):
        self.base = base or Inflector()

    def base_name(self, table: TableInfo) -> str:
        return self.base.base_name(table)

    def table_type(self, table: TableInfo) -> str:
        return self.base.table_type(table)

    def connection_type(self, table: TableInfo) -> str:
        return self.base.connection_type(table)

    def edge_type(self, table: TableInfo) -> str:
        return self.base.edge_type(table)

    def condition_type(self, table: TableInfo) -> str:
        return self.base.condition_type(table)

    def order_by_type(self, table: TableInfo) -> str:
        return self.base.order_by_type(table)

    def input_type(self, table: TableInfo) -> str:
        return self.base.input_type(table)

    def patch_type(self, table: TableInfo) -> str:
        return self.base.patch_type(table)

    def enum_type(self, enum: EnumInfo) -> str:
        return self.base.enum_type(enum)

    def enum_value(self, value: str) -> str:
        return self.base.enum_value(value)

    def column(self, column: ColumnInfo) -> str:
        return self.base.column(column)

    def order_by_value(self, column: ColumnInfo, ascending: bool) -> str:
        return self.base.order_by_value(column, ascending)

    def all_rows(self, table: TableInfo) -> str:
        return self.base.all_rows(table)

    def row_by_unique(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        return self.base.row_by_unique(table, columns)

    def single_relation(self, table: TableInfo, fk: ForeignKeyInfo, target: TableInfo) -> str:
        return self.base.single_relation(table, fk, target)

    def many_relation(
        self, source: TableInfo, fk: ForeignKeyInfo, target: TableInfo, unambiguous: bool
    ) -> str:
        return self.base.many_relation(source, fk, target, unambiguous)

    def single_backward_relation(
        self, source: TableInfo, fk: ForeignKeyInfo, target: TableInfo, unambiguous: bool
    ) -> str:
        return self.base.single_backward_relation(source, fk, target, unambiguous)

    def function(self, function: FunctionInfo) -> str:
        return self.base.function(function)

    def argument(self, name: str) -> str:
        return self.base.argument(name)

    def create_mutation(self, table: TableInfo) -> str:
        return self.base.create_mutation(table)

    def update_mutation(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        return self.base.update_mutation(table, columns)

    def delete_mutation(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        return self.base.delete_mutation(table, columns)
