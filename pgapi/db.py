# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""SQLAlchemy engine creation."""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

from pgapi.config import to_sqlalchemy_url

logger = logging.getLogger(__name__)


def create_database_engine(url: str) -> Engine:
    """Create a pooled engine for ``url``.

    SQLite connections may be used from the event loop and the watcher
    thread, so the same-thread check is turned off for them.
    """
    sa_url = make_url(to_sqlalchemy_url(url))
    is_sqlite = sa_url.get_backend_name() == "sqlite"
    connect_args = {"check_same_thread": False} if is_sqlite else {}

    engine = create_engine(sa_url, pool_pre_ping=True, connect_args=connect_args)
    if is_sqlite:
        _enable_sqlite_savepoints(engine)

    logger.debug(f"Created engine for {sa_url.render_as_string(hide_password=True)}")
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works with pysqlite."""

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")
