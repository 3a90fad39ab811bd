# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Plugins that extend schema derivation.

A plugin is a GatewayPlugin subclass (or instance). Plugins run in the
order they are configured; each hook receives the result of the previous
plugin.

Usage:
    config = GatewayConfig(plugins=(
        "pgapi.plugins.simplify:SimplifyInflectorPlugin",
        "myproject.plugins:HideAuditTables",
    ))
"""

import logging
from typing import Any, Iterable

from pgapi.catalog.models import DatabaseCatalog
from pgapi.config import import_object
from pgapi.errors import ConfigError, PluginError
from pgapi.inflection import Inflector

logger = logging.getLogger(__name__)


class GatewayPlugin:
    """Base class for plugins. Override the hooks you need."""

    name: str = "plugin"

    def inflector(self, inflector: Inflector) -> Inflector:
        """Return the inflector to use from here on."""
        return inflector

    def catalog(self, catalog: DatabaseCatalog) -> DatabaseCatalog:
        """Return the catalog the schema is derived from (e.g. with tables removed)."""
        return catalog


def load_plugins(handles: Iterable[Any]) -> list[GatewayPlugin]:
    """Resolve import strings, classes and instances to plugin instances.

    Raises:
        PluginError: If a handle does not resolve to a GatewayPlugin
    """
    plugins = []
    for handle in handles:
        obj = handle
        if isinstance(handle, str):
            try:
                obj = import_object(handle)
            except ConfigError as e:
                raise PluginError(f"Cannot load plugin {handle!r}: {e}") from e

        if isinstance(obj, type) and issubclass(obj, GatewayPlugin):
            obj = obj()
        if not isinstance(obj, GatewayPlugin):
            raise PluginError(f"Not a GatewayPlugin: {handle!r}")

        logger.debug(f"Loaded plugin {obj.name}")
        plugins.append(obj)
    return plugins


def apply_plugins(
    plugins: Iterable[GatewayPlugin], catalog: DatabaseCatalog
) -> tuple[Inflector, DatabaseCatalog]:
    """Run every plugin hook in order over a fresh Inflector and the catalog."""
    inflector = Inflector()
    for plugin in plugins:
        inflector = plugin.inflector(inflector)
        catalog = plugin.catalog(catalog)
    return inflector, catalog


__all__ = ["GatewayPlugin", "load_plugins", "apply_plugins"]
