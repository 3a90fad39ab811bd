# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Subscriptions backed by PostgreSQL LISTEN/NOTIFY.

A client subscribing to ``listen(topic: "orders")`` receives every
``NOTIFY "pgapi:orders", '<payload>'`` issued in the database.
"""

import asyncio
import logging
from typing import AsyncGenerator, AsyncIterator, Optional, Protocol

import psycopg2
import psycopg2.extensions
from psycopg2 import sql
from sqlalchemy.engine import make_url

from pgapi.config import to_sqlalchemy_url
from pgapi.graphql.types import ListenPayload

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "pgapi:"


class NotificationSource(Protocol):
    def subscribe(self, channel: str) -> AsyncIterator[Optional[str]]:
        """Yield the payload of every notification on ``channel``."""
        ...


class PostgresNotificationSource:
    """One dedicated psycopg2 connection per subscription, read from the event loop."""

    def __init__(self, url: str):
        sa_url = make_url(to_sqlalchemy_url(url)).set(drivername="postgresql")
        self.dsn = sa_url.render_as_string(hide_password=False)

    async def subscribe(self, channel: str) -> AsyncIterator[Optional[str]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        conn = await asyncio.to_thread(psycopg2.connect, self.dsn)
        conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
        fd = conn.fileno()

        def on_readable() -> None:
            try:
                conn.poll()
            except psycopg2.Error as e:
                # The socket stays readable once the server is gone
                loop.remove_reader(fd)
                queue.put_nowait(e)
                return
            while conn.notifies:
                notify = conn.notifies.pop(0)
                queue.put_nowait(notify.payload or None)

        try:
            with conn.cursor() as cursor:
                cursor.execute(sql.SQL("LISTEN {}").format(sql.Identifier(channel)))
            loop.add_reader(fd, on_readable)
            logger.debug(f"Listening on {channel}")
            try:
                while True:
                    item = await queue.get()
                    if isinstance(item, psycopg2.Error):
                        logger.error(f"Lost LISTEN connection for {channel}: {item}")
                        raise item
                    yield item
            finally:
                loop.remove_reader(fd)
        finally:
            conn.close()
            logger.debug(f"Stopped listening on {channel}")


def listen_resolver(source: NotificationSource):
    """Resolver for ``Subscription.listen``."""

    async def listen(topic: str) -> AsyncGenerator[ListenPayload, None]:
        async for payload in source.subscribe(f"{CHANNEL_PREFIX}{topic}"):
            yield ListenPayload(event=topic, payload=payload)

    return listen


def notification_source_for(url: Optional[str]) -> Optional[NotificationSource]:
    """LISTEN/NOTIFY source for ``url``, or None when the database cannot provide one."""
    if not url:
        return None
    if make_url(to_sqlalchemy_url(url)).get_backend_name() != "postgresql":
        logger.info("Subscriptions need PostgreSQL LISTEN/NOTIFY; listen is not exposed")
        return None
    return PostgresNotificationSource(url)
