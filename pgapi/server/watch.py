# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Rebuild the GraphQL schema when the database schema changes."""

import asyncio
import logging
from typing import Callable, Optional

from pgapi.catalog.introspector import CatalogIntrospector
from pgapi.catalog.models import DatabaseCatalog
from pgapi.errors import IntrospectionError

logger = logging.getLogger(__name__)


class SchemaWatcher:
    """Polls the catalog and calls ``rebuild`` whenever its fingerprint changes.

    Introspection runs in a worker thread so requests keep being served.
    A failing rebuild is logged and the previous schema stays in place.
    """

    def __init__(
        self,
        introspector: CatalogIntrospector,
        rebuild: Callable[[DatabaseCatalog], None],
        interval: float = 2.0,
        fingerprint: Optional[str] = None,
    ):
        self.introspector = introspector
        self.rebuild = rebuild
        self.interval = interval
        self.fingerprint = fingerprint
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """Introspect once; returns True if a new schema was installed."""
        catalog = await asyncio.to_thread(self.introspector.introspect)
        fingerprint = catalog.fingerprint()
        if fingerprint == self.fingerprint:
            return False

        logger.info("Database schema changed, rebuilding GraphQL schema")
        try:
            self.rebuild(catalog)
        except Exception as e:
            logger.error(f"Schema rebuild failed, keeping previous schema: {e}")
            return False

        self.fingerprint = fingerprint
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check()
            except IntrospectionError as e:
                logger.warning(f"Schema watch: {e}")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            logger.info(f"Watching database schema every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
