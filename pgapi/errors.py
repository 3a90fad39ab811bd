# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Exception types raised by pgapi."""


class GatewayError(Exception):
    """Base class for pgapi errors."""


class ConfigError(GatewayError, ValueError):
    """Invalid configuration value (bad PORT, unknown option, unreadable YAML)."""


class GatewayStartupError(GatewayError):
    """The server could not reach the Serving state."""


class PluginError(GatewayError):
    """A plugin handle could not be resolved to a GatewayPlugin."""


class IntrospectionError(GatewayError):
    """Database metadata could not be read."""
