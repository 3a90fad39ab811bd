# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""GraphQL schema derivation and execution."""

from pgapi.graphql.builder import SchemaBuilder, export_schema, print_schema
from pgapi.graphql.context import GatewayContext
from pgapi.graphql.subscriptions import PostgresNotificationSource, notification_source_for

__all__ = [
    "SchemaBuilder",
    "export_schema",
    "print_schema",
    "GatewayContext",
    "PostgresNotificationSource",
    "notification_source_for",
]
