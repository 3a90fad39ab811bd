# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Schema extensions: transaction handling, explain data and error details.

Extensions read their options from the GatewayContext, so the same
extension classes serve every derived schema.
"""

import logging
import traceback
from typing import Any, AsyncIterator, Iterable, Iterator, Optional

from graphql import GraphQLError
from sqlalchemy.exc import DBAPIError
from strawberry.extensions import SchemaExtension

from pgapi.graphql.context import GatewayContext
from pgapi.graphql.sql import explain

logger = logging.getLogger(__name__)


def _gateway_context(extension: SchemaExtension) -> Optional[GatewayContext]:
    context = extension.execution_context.context
    return context if isinstance(context, GatewayContext) else None


class DatabaseTransaction(SchemaExtension):
    """Give each operation its own connection, committed when the operation ends."""

    async def on_operation(self) -> AsyncIterator[None]:
        context = _gateway_context(self)
        if context is None:
            yield
            return
        operation = context.begin_operation()
        try:
            yield
        except BaseException:
            await context.end_operation(operation, commit=False)
            raise
        await context.end_operation(operation, commit=True)


class ExplainExtension(SchemaExtension):
    """Attach ``extensions.explain`` with the query plan of every statement."""

    async def on_execute(self) -> AsyncIterator[None]:
        self._explain: Optional[list[dict[str, Any]]] = None
        yield
        context = _gateway_context(self)
        if context is None or not context.explain_requested():
            return
        if not context.operation.statements:
            return
        self._explain = await context.run(
            lambda operation: [explain(operation.connection, statement) for statement in operation.statements]
        )

    def get_results(self) -> dict[str, Any]:
        explain_data = getattr(self, "_explain", None)
        if explain_data is None:
            return {}
        return {"explain": explain_data}


class ErrorDetailsExtension(SchemaExtension):
    """Replace driver error messages with the database's and add diagnostics.

    Follows the shape of strawberry's MaskErrors: errors are rewritten once
    the operation has finished.
    """

    def on_operation(self) -> Iterator[None]:
        yield
        context = _gateway_context(self)
        result = self.execution_context.result
        if context is None or result is None or not getattr(result, "errors", None):
            return
        result.errors = [
            decorate_error(
                error,
                context.config.error_verbosity,
                context.config.extended_error_fields,
            )
            for error in result.errors
        ]


def _diagnostics(db_error: Any) -> dict[str, Any]:
    """Extended fields available from the driver exception."""
    details: dict[str, Any] = {}
    diag = getattr(db_error, "diag", None)  # psycopg2
    if diag is not None:
        details["hint"] = getattr(diag, "message_hint", None)
        details["detail"] = getattr(diag, "message_detail", None)
    details["errcode"] = (
        getattr(db_error, "pgcode", None)
        or getattr(db_error, "sqlite_errorname", None)
    )
    return details


def _database_message(db_error: Any) -> str:
    diag = getattr(db_error, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    if primary:
        return primary
    message = str(db_error).strip()
    # psycopg2 appends DETAIL/HINT lines to the message
    return message.splitlines()[0] if message else type(db_error).__name__


def decorate_error(
    error: GraphQLError,
    verbosity: str = "none",
    fields: Iterable[str] = (),
) -> GraphQLError:
    """Return ``error`` with database details and the stack per ``verbosity``."""
    original = error.original_error
    if original is None:
        return error

    message = error.message
    extensions = dict(error.extensions or {})

    if isinstance(original, DBAPIError) and original.orig is not None:
        message = _database_message(original.orig)
        diagnostics = _diagnostics(original.orig)
        for name in fields:
            if diagnostics.get(name) is not None:
                extensions[name] = diagnostics[name]

    if verbosity in ("string", "json"):
        stack = "".join(traceback.format_exception(original))
        extensions["stack"] = stack if verbosity == "string" else stack.splitlines()

    return GraphQLError(
        message,
        nodes=error.nodes,
        source=error.source,
        positions=error.positions,
        path=error.path,
        original_error=original,
        extensions=extensions or None,
    )
