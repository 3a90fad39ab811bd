# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Shorter field names: ``users``, ``user(id)``, ``author``, ``posts``."""

from pgapi.catalog.models import ForeignKeyInfo, TableInfo
from pgapi.inflection import Inflector, WrappingInflector, camel, plural, singular
from pgapi.plugins import GatewayPlugin


class SimplifyInflector(WrappingInflector):
    """Drops the ``all`` prefix, ``ByPk`` suffixes and ``_id`` relation noise.

    Ambiguous relations (two foreign keys between the same tables) and every
    name not restyled here come from the wrapped inflector.
    """

    def all_rows(self, table: TableInfo) -> str:
        return camel(plural(self.base_name(table)))

    def row_by_unique(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        if columns == table.primary_key:
            return camel(singular(self.base_name(table)))
        return self.base.row_by_unique(table, columns)

    def single_relation(self, table: TableInfo, fk: ForeignKeyInfo, target: TableInfo) -> str:
        if fk.tags.name:
            return fk.tags.name
        if len(fk.columns) == 1:
            column = fk.columns[0]
            for suffix in ("_id", "Id", "_uuid"):
                if column.endswith(suffix) and len(column) > len(suffix):
                    return camel(column[: -len(suffix)])
        return camel(singular(self.base_name(target)))

    def many_relation(
        self, source: TableInfo, fk: ForeignKeyInfo, target: TableInfo, unambiguous: bool
    ) -> str:
        if unambiguous:
            return camel(plural(self.base_name(source)))
        return self.base.many_relation(source, fk, target, unambiguous)

    def single_backward_relation(
        self, source: TableInfo, fk: ForeignKeyInfo, target: TableInfo, unambiguous: bool
    ) -> str:
        if unambiguous:
            return camel(singular(self.base_name(source)))
        return self.base.single_backward_relation(source, fk, target, unambiguous)

    def update_mutation(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        if columns == table.primary_key:
            return "update" + self.table_type(table)
        return self.base.update_mutation(table, columns)

    def delete_mutation(self, table: TableInfo, columns: tuple[str, ...]) -> str:
        if columns == table.primary_key:
            return "delete" + self.table_type(table)
        return self.base.delete_mutation(table, columns)


class SimplifyInflectorPlugin(GatewayPlugin):
    name = "simplify-inflector"

    def inflector(self, inflector: Inflector) -> Inflector:
        return SimplifyInflector(base=inflector)
