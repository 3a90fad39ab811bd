# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Database schema introspection.

Tables, views, columns, keys, indexes and comments come from SQLAlchemy's
inspector and work on any dialect. On PostgreSQL the catalog is also
queried for enum types, functions and the serving role's privileges.
"""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine, Inspector
from sqlalchemy.exc import SQLAlchemyError

from pgapi.catalog.models import (
    ALL_PRIVILEGES,
    ColumnInfo,
    ColumnType,
    DatabaseCatalog,
    EnumInfo,
    ForeignKeyInfo,
    FunctionArgument,
    FunctionInfo,
    TableInfo,
    UniqueConstraintInfo,
)
from pgapi.errors import IntrospectionError

logger = logging.getLogger(__name__)

_PG_TYPE_KINDS = {
    "smallint": "int",
    "integer": "int",
    "int": "int",
    "int2": "int",
    "int4": "int",
    "bigint": "bigint",
    "int8": "bigint",
    "real": "float",
    "double precision": "float",
    "float4": "float",
    "float8": "float",
    "numeric": "numeric",
    "decimal": "numeric",
    "boolean": "bool",
    "bool": "bool",
    "date": "date",
    "timestamp without time zone": "datetime",
    "timestamp with time zone": "datetime",
    "timestamp": "datetime",
    "timestamptz": "datetime",
    "time without time zone": "time",
    "time with time zone": "time",
    "time": "time",
    "uuid": "uuid",
    "json": "json",
    "jsonb": "json",
    "bytea": "binary",
}

_VOLATILITY = {"i": "immutable", "s": "stable", "v": "volatile"}

_TABLE_PRIVILEGES_SQL = text("""
    SELECT c.relname AS name,
           has_table_privilege(:role, c.oid, 'SELECT') AS can_select,
           has_table_privilege(:role, c.oid, 'INSERT') AS can_insert,
           has_table_privilege(:role, c.oid, 'UPDATE') AS can_update,
           has_table_privilege(:role, c.oid, 'DELETE') AS can_delete
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = :schema AND c.relkind IN ('r', 'v', 'm', 'p', 'f')
""")

_COLUMN_PRIVILEGES_SQL = text("""
    SELECT c.relname AS table_name, a.attname AS name,
           has_column_privilege(:role, c.oid, a.attnum, 'SELECT') AS can_select,
           has_column_privilege(:role, c.oid, a.attnum, 'INSERT') AS can_insert,
           has_column_privilege(:role, c.oid, a.attnum, 'UPDATE') AS can_update
    FROM pg_catalog.pg_attribute a
    JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = :schema AND a.attnum > 0 AND NOT a.attisdropped
      AND c.relkind IN ('r', 'v', 'm', 'p', 'f')
""")

_FUNCTIONS_SQL = text("""
    SELECT n.nspname AS schema,
           p.proname AS name,
           p.provolatile AS volatility,
           p.proretset AS returns_set,
           pg_catalog.format_type(p.prorettype, NULL) AS return_type,
           rc.relname AS return_table,
           rn.nspname AS return_table_schema,
           p.proargnames AS arg_names,
           ARRAY(
               SELECT pg_catalog.format_type(p.proargtypes[i], NULL)
               FROM generate_series(0, p.pronargs - 1) AS i
               ORDER BY i
           ) AS arg_types,
           p.pronargdefaults AS n_defaults,
           pg_catalog.obj_description(p.oid, 'pg_proc') AS comment,
           has_function_privilege(:role, p.oid, 'EXECUTE') AS executable
    FROM pg_catalog.pg_proc p
    JOIN pg_catalog.pg_namespace n ON n.oid = p.pronamespace
    JOIN pg_catalog.pg_type rt ON rt.oid = p.prorettype
    LEFT JOIN pg_catalog.pg_class rc ON rc.oid = rt.typrelid AND rc.relkind IN ('r', 'v', 'm', 'p')
    LEFT JOIN pg_catalog.pg_namespace rn ON rn.oid = rc.relnamespace
    WHERE n.nspname = ANY(:schemas)
      AND p.prokind = 'f'
      AND p.proargmodes IS NULL
      AND NOT EXISTS (
          SELECT 1 FROM pg_catalog.pg_depend d
          WHERE d.objid = p.oid AND d.deptype = 'e'
      )
    ORDER BY n.nspname, p.proname
""")


def pg_type_kind(type_name: str, enum_names: Sequence[str] = ()) -> ColumnType:
    """Classify a PostgreSQL type name as rendered by ``format_type``."""
    name = type_name.strip()
    if name.endswith("[]"):
        return ColumnType("array", name, item=pg_type_kind(name[:-2], enum_names))

    base = name.split("(")[0].strip().lower()
    bare = base.split(".")[-1].strip('"')
    if bare in enum_names:
        return ColumnType("enum", name, enum_name=bare)
    return ColumnType(_PG_TYPE_KINDS.get(base, "text"), name)


class CatalogIntrospector:
    """Reads database metadata into a DatabaseCatalog.

    Args:
        engine: Owner engine used for metadata reads
        schemas: Schemas to expose (ignored on dialects without schemas)
        serving_engine: Engine whose role privileges are checked; defaults to ``engine``
        enforce_rbac: Whether to compute privileges (otherwise everything is allowed)
    """

    def __init__(
        self,
        engine: Engine,
        schemas: Sequence[str] = ("public",),
        serving_engine: Optional[Engine] = None,
        enforce_rbac: bool = True,
    ):
        self.engine = engine
        self.serving_engine = serving_engine or engine
        self.enforce_rbac = enforce_rbac
        self.is_postgres = engine.dialect.name == "postgresql"
        self.schemas: tuple[Optional[str], ...] = tuple(schemas) if self.is_postgres else (None,)

    def introspect(self) -> DatabaseCatalog:
        """Read the full catalog.

        Raises:
            IntrospectionError: If the database cannot be reached or read
        """
        try:
            return self._introspect()
        except SQLAlchemyError as e:
            raise IntrospectionError(f"Schema introspection failed: {e}") from e

    def _introspect(self) -> DatabaseCatalog:
        inspector = inspect(self.engine)
        current_role = self._current_role()

        enums: list[EnumInfo] = []
        if self.is_postgres:
            enums = self._introspect_enums(inspector)

        tables: list[TableInfo] = []
        for schema in self.schemas:
            table_privileges, column_privileges = self._privileges(schema, current_role)
            for name in inspector.get_table_names(schema=schema):
                tables.append(self._introspect_table(
                    inspector, schema, name, "table", table_privileges, column_privileges,
                ))
            for name in inspector.get_view_names(schema=schema):
                tables.append(self._introspect_table(
                    inspector, schema, name, "view", table_privileges, column_privileges,
                ))

        functions: list[FunctionInfo] = []
        if self.is_postgres:
            functions = self._introspect_functions(current_role, [e.name for e in enums])

        logger.info(
            f"Introspected {len(tables)} tables/views, {len(functions)} functions, "
            f"{len(enums)} enums ({self.engine.dialect.name})"
        )
        return DatabaseCatalog(
            dialect=self.engine.dialect.name,
            tables=tuple(tables),
            functions=tuple(functions),
            enums=tuple(enums),
            current_role=current_role,
        )

    def _current_role(self) -> Optional[str]:
        if not self.is_postgres:
            return None
        with self.serving_engine.connect() as conn:
            return conn.execute(text("SELECT current_user")).scalar()

    def _introspect_enums(self, inspector: Inspector) -> list[EnumInfo]:
        enums = []
        for schema in self.schemas:
            for enum in inspector.get_enums(schema=schema):
                enums.append(EnumInfo(
                    schema=enum.get("schema") or schema,
                    name=enum["name"],
                    values=tuple(enum["labels"]),
                ))
        return enums

    def _privileges(
        self, schema: Optional[str], role: Optional[str]
    ) -> tuple[dict[str, frozenset[str]], dict[tuple[str, str], frozenset[str]]]:
        """Table and column privileges of ``role`` in ``schema``."""
        if not (self.is_postgres and self.enforce_rbac and role):
            return {}, {}

        table_privileges: dict[str, frozenset[str]] = {}
        column_privileges: dict[tuple[str, str], frozenset[str]] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(_TABLE_PRIVILEGES_SQL, {"role": role, "schema": schema}).mappings():
                table_privileges[row["name"]] = _granted(row)
            for row in conn.execute(_COLUMN_PRIVILEGES_SQL, {"role": role, "schema": schema}).mappings():
                column_privileges[(row["table_name"], row["name"])] = _granted(row)
        return table_privileges, column_privileges

    def _introspect_table(
        self,
        inspector: Inspector,
        schema: Optional[str],
        name: str,
        kind: str,
        table_privileges: dict[str, frozenset[str]],
        column_privileges: dict[tuple[str, str], frozenset[str]],
    ) -> TableInfo:
        """Introspect a single table or view including comments."""
        table_comment = None
        try:
            comment_info = inspector.get_table_comment(name, schema=schema)
            table_comment = comment_info.get("text") if comment_info else None
        except NotImplementedError:
            # SQLite and friends have no comments
            pass

        pk_constraint = inspector.get_pk_constraint(name, schema=schema) if kind == "table" else {}
        primary_key = tuple(pk_constraint.get("constrained_columns") or ())

        columns = []
        for col in inspector.get_columns(name, schema=schema):
            col_type = ColumnType.from_sqlalchemy(col["type"])
            has_default = (
                col.get("default") is not None
                or col.get("identity") is not None
                or col.get("autoincrement") is True
                or col.get("computed") is not None
                or (primary_key == (col["name"],) and col_type.kind in ("int", "bigint"))
            )
            columns.append(ColumnInfo(
                name=col["name"],
                type=col_type,
                # Views cannot promise non-null columns; SQLite reports key columns as nullable
                nullable=True if kind == "view" else (
                    col["name"] not in primary_key and bool(col.get("nullable", True))
                ),
                has_default=has_default,
                comment=col.get("comment"),
                privileges=column_privileges.get((name, col["name"]), ALL_PRIVILEGES),
            ))

        unique_constraints: list[UniqueConstraintInfo] = []
        foreign_keys: list[ForeignKeyInfo] = []
        indexes: list[tuple[str, ...]] = [primary_key] if primary_key else []
        if kind == "table":
            for uc in inspector.get_unique_constraints(name, schema=schema):
                unique_constraints.append(UniqueConstraintInfo(uc.get("name"), tuple(uc["column_names"])))

            for index in inspector.get_indexes(name, schema=schema):
                column_names = index.get("column_names") or []
                if not column_names or None in column_names:
                    continue  # expression index
                indexes.append(tuple(column_names))
                if index.get("unique") and not index.get("dialect_options", {}).get("postgresql_where"):
                    unique_constraints.append(UniqueConstraintInfo(index.get("name"), tuple(column_names)))

            for fk in inspector.get_foreign_keys(name, schema=schema):
                if not fk.get("constrained_columns") or not fk.get("referred_columns"):
                    continue
                foreign_keys.append(ForeignKeyInfo(
                    name=fk.get("name"),
                    columns=tuple(fk["constrained_columns"]),
                    target_schema=fk.get("referred_schema") or schema,
                    target=fk["referred_table"],
                    target_columns=tuple(fk["referred_columns"]),
                    comment=fk.get("comment"),
                ))

            indexes.extend(uc.columns for uc in unique_constraints)

        privileges = table_privileges.get(name, ALL_PRIVILEGES)
        if kind == "view":
            privileges = privileges & {"select"}

        return TableInfo(
            schema=schema,
            name=name,
            kind=kind,
            comment=table_comment,
            columns=tuple(columns),
            primary_key=primary_key,
            unique_constraints=tuple(_dedupe_unique(unique_constraints)),
            foreign_keys=tuple(foreign_keys),
            indexes=tuple(dict.fromkeys(indexes)),
            privileges=privileges,
        )

    def _introspect_functions(self, role: Optional[str], enum_names: list[str]) -> list[FunctionInfo]:
        functions = []
        with self.engine.connect() as conn:
            rows = conn.execute(_FUNCTIONS_SQL, {"role": role, "schemas": list(self.schemas)}).mappings()
            for row in rows:
                function = self._function_from_row(row, enum_names)
                if function is not None:
                    functions.append(function)
        return functions

    @staticmethod
    def _function_from_row(row: Any, enum_names: list[str]) -> Optional[FunctionInfo]:
        arg_types = list(row["arg_types"] or [])
        arg_names = list(row["arg_names"] or [])[:len(arg_types)]
        if len(arg_names) != len(arg_types) or not all(arg_names):
            logger.debug(f"Skipping function {row['name']}: unnamed arguments")
            return None

        n_defaults = row["n_defaults"] or 0
        arguments = tuple(
            FunctionArgument(
                name=arg_name,
                type=pg_type_kind(arg_type, enum_names),
                has_default=i >= len(arg_types) - n_defaults,
            )
            for i, (arg_name, arg_type) in enumerate(zip(arg_names, arg_types))
        )

        return_type = None
        return_table = None
        if row["return_table"]:
            return_table = (row["return_table_schema"], row["return_table"])
        elif row["return_type"] in ("void", "trigger", "record", "event_trigger"):
            logger.debug(f"Skipping function {row['name']}: returns {row['return_type']}")
            return None
        else:
            return_type = pg_type_kind(row["return_type"], enum_names)

        return FunctionInfo(
            schema=row["schema"],
            name=row["name"],
            arguments=arguments,
            volatility=_VOLATILITY.get(row["volatility"], "volatile"),
            returns_set=bool(row["returns_set"]),
            return_type=return_type,
            return_table=return_table,
            comment=row["comment"],
            executable=bool(row["executable"]),
        )


def _granted(row: Any) -> frozenset[str]:
    return frozenset(
        privilege
        for privilege in ("select", "insert", "update", "delete")
        if row.get(f"can_{privilege}")
    )


def _dedupe_unique(constraints: list[UniqueConstraintInfo]) -> list[UniqueConstraintInfo]:
    seen: set[frozenset[str]] = set()
    result = []
    for constraint in constraints:
        key = frozenset(constraint.columns)
        if key not in seen:
            seen.add(key)
            result.append(constraint)
    return result
