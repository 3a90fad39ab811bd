# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""SQL statements issued by the GraphQL resolvers.

Statements are built with SQLAlchemy Core against Table objects derived
from the catalog, so the same code runs on PostgreSQL and SQLite.
"""

import logging
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import Table, bindparam, delete, func, insert, select, text, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import CompileError, SQLAlchemyError
from sqlalchemy.sql import ColumnElement, Executable
from sqlalchemy.sql.expression import Delete, Insert, Select, TextClause, Update

from pgapi.catalog.models import FunctionInfo

logger = logging.getLogger(__name__)

# (column name, ascending)
OrderSpec = tuple[str, bool]


def conditions(table: Table, values: Mapping[str, Any]) -> list[ColumnElement]:
    """Equality filters; ``None`` matches NULL."""
    return [
        table.c[name].is_(None) if value is None else table.c[name] == value
        for name, value in values.items()
    ]


def select_rows(
    table: Table,
    columns: Sequence[str],
    where: Mapping[str, Any],
    order: Sequence[OrderSpec] = (),
    limit: Optional[int] = None,
    offset: int = 0,
) -> Select:
    stmt = select(*(table.c[name] for name in columns))
    clauses = conditions(table, where)
    if clauses:
        stmt = stmt.where(*clauses)
    for name, ascending in order:
        stmt = stmt.order_by(table.c[name].asc() if ascending else table.c[name].desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    if offset:
        stmt = stmt.offset(offset)
    return stmt


def count_rows(table: Table, where: Mapping[str, Any]) -> Select:
    stmt = select(func.count()).select_from(table)
    clauses = conditions(table, where)
    if clauses:
        stmt = stmt.where(*clauses)
    return stmt


def insert_row(table: Table, values: Mapping[str, Any], returning: Sequence[str]) -> Insert:
    stmt = insert(table)
    if values:
        stmt = stmt.values(dict(values))
    return stmt.returning(*(table.c[name] for name in returning))


def update_row(
    table: Table, keys: Mapping[str, Any], values: Mapping[str, Any], returning: Sequence[str]
) -> Update:
    return (
        update(table)
        .where(*conditions(table, keys))
        .values(dict(values))
        .returning(*(table.c[name] for name in returning))
    )


def delete_row(table: Table, keys: Mapping[str, Any], returning: Sequence[str]) -> Delete:
    return (
        delete(table)
        .where(*conditions(table, keys))
        .returning(*(table.c[name] for name in returning))
    )


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def call_function(function: FunctionInfo, arguments: Mapping[str, Any]) -> TextClause:
    """Call a PostgreSQL function using named argument notation.

    Arguments missing from ``arguments`` are left out so the function's
    own defaults apply.
    """
    params = []
    binds = []
    for i, argument in enumerate(function.arguments):
        if argument.name not in arguments:
            continue
        key = f"arg_{i}"
        params.append(f"{_quote(argument.name)} => :{key}")
        binds.append(bindparam(key, arguments[argument.name], type_=argument.type.to_sqlalchemy()))

    name = _quote(function.name)
    if function.schema:
        name = f"{_quote(function.schema)}.{name}"
    call = f"{name}({', '.join(params)})"

    if function.return_table is not None:
        sql = f"SELECT * FROM {call}"
    else:
        sql = f"SELECT {call} AS value"
    return text(sql).bindparams(*binds)


def explain(conn: Connection, statement: Executable) -> dict[str, Any]:
    """Query text and plan of ``statement`` as run on ``conn``."""
    dialect = conn.dialect
    try:
        sql = str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))
    except CompileError:
        # Parameter types without a literal renderer (JSON, arrays, ...)
        return {"query": str(statement.compile(dialect=dialect)), "plan": None}

    prefix = "EXPLAIN" if dialect.name == "postgresql" else "EXPLAIN QUERY PLAN"
    try:
        # A failed EXPLAIN must not abort the operation's transaction
        with conn.begin_nested():
            rows = conn.exec_driver_sql(f"{prefix} {sql}").fetchall()
    except SQLAlchemyError as e:
        logger.warning(f"Could not explain statement: {e}")
        return {"query": sql, "plan": None}

    # PostgreSQL returns one text column, SQLite puts the detail last
    plan = "\n".join(str(row[-1]) for row in rows)
    return {"query": sql, "plan": plan}
