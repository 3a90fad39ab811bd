# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""pgapi - GraphQL API generated from a database schema."""

__version__ = "0.1.0"

from pgapi.config import GatewayConfig, build_configuration, resolve_port
from pgapi.errors import (
    ConfigError,
    GatewayError,
    GatewayStartupError,
    IntrospectionError,
    PluginError,
)

__all__ = [
    "__version__",
    "GatewayConfig",
    "build_configuration",
    "resolve_port",
    "GatewayError",
    "ConfigError",
    "GatewayStartupError",
    "IntrospectionError",
    "PluginError",
]
