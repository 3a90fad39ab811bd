# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Per-request GraphQL context and per-operation database state."""

import asyncio
import logging
from contextvars import ContextVar
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult, Engine, RootTransaction
from sqlalchemy.sql import Executable
from strawberry.fastapi import BaseContext

from pgapi.config import GatewayConfig

logger = logging.getLogger(__name__)

EXPLAIN_HEADER = "x-explain"

T = TypeVar("T")


class Operation:
    """Connection, transaction and statement log of one GraphQL operation.

    The connection is opened by the first statement. All work runs in
    worker threads, one call at a time, serialized by ``lock``.
    """

    def __init__(self, engine: Engine, config: GatewayConfig, request: Any = None):
        self.engine = engine
        self.config = config
        self.request = request
        self.statements: list[Executable] = []
        self.lock = asyncio.Lock()
        self._connection: Optional[Connection] = None
        self._transaction: Optional[RootTransaction] = None

    @property
    def connection(self) -> Connection:
        if self._connection is None:
            self._open()
        return self._connection

    def _open(self) -> None:
        conn = self.engine.connect()
        self._transaction = conn.begin()
        self._connection = conn

        settings = self.config.pg_settings(self.request)
        if not settings:
            return
        if self.engine.dialect.name != "postgresql":
            logger.debug(f"Ignoring per-request settings on {self.engine.dialect.name}")
            return
        for key, value in settings.items():
            # Transaction-local, like SET LOCAL
            conn.execute(
                text("SELECT set_config(:key, :value, true)"),
                {"key": key, "value": None if value is None else str(value)},
            )

    def execute(self, statement: Executable, parameters: Optional[dict[str, Any]] = None) -> CursorResult:
        """Execute a statement on the operation's connection, recording it for explain."""
        self.statements.append(statement)
        if parameters:
            return self.connection.execute(statement, parameters)
        return self.connection.execute(statement)

    def finish(self, commit: bool = True) -> None:
        """End the transaction and return the connection to the pool."""
        if self._connection is None:
            return
        try:
            if self._transaction is not None and self._transaction.is_active:
                if commit:
                    self._transaction.commit()
                else:
                    self._transaction.rollback()
        finally:
            self._connection.close()
            self._connection = None
            self._transaction = None


# Operations of a batched request run as separate tasks, each with its own value
_current_operation: ContextVar[Optional[Operation]] = ContextVar("pgapi_operation", default=None)


class GatewayContext(BaseContext):
    """Context available to all resolvers.

    One context serves every operation of a request. The DatabaseTransaction
    extension starts an Operation when each operation begins and finishes it
    when the operation ends.
    """

    def __init__(self, engine: Engine, config: GatewayConfig, explorer: bool = False):
        super().__init__()
        self.engine = engine
        self.config = config
        self.explorer = explorer

    @property
    def operation(self) -> Operation:
        operation = _current_operation.get()
        if operation is None:
            raise RuntimeError("No GraphQL operation in progress")
        return operation

    def begin_operation(self) -> Operation:
        operation = Operation(self.engine, self.config, self.request)
        _current_operation.set(operation)
        return operation

    async def end_operation(self, operation: Operation, commit: bool = True) -> None:
        try:
            async with operation.lock:
                await asyncio.get_running_loop().run_in_executor(None, operation.finish, commit)
        finally:
            if _current_operation.get() is operation:
                _current_operation.set(None)

    async def run(self, work: Callable[[Operation], T]) -> T:
        """Run ``work(operation)`` in a worker thread, off the event loop."""
        operation = self.operation
        async with operation.lock:
            return await asyncio.get_running_loop().run_in_executor(None, work, operation)

    def explain_requested(self) -> bool:
        """Whether explain data should be attached to this operation's result."""
        if not self.config.allow_explain(self.request):
            return False
        if self.explorer and self.config.explorer_enhanced:
            return True
        headers = getattr(self.request, "headers", None) or {}
        return headers.get(EXPLAIN_HEADER, "").lower() == "on"
