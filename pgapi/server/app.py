# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""FastAPI application factory for the pgapi server."""

import logging
from contextlib import asynccontextmanager

# Configure logging for the package
# Only add handler if not already configured, and prevent duplicate logs
_pgapi_logger = logging.getLogger('pgapi')
if not any(isinstance(h, logging.StreamHandler) for h in _pgapi_logger.handlers):
    _console_handler = logging.StreamHandler()
    _console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    _pgapi_logger.addHandler(_console_handler)
    _pgapi_logger.setLevel(logging.INFO)
# Always prevent propagation to root logger to avoid duplicate messages
_pgapi_logger.propagate = False

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from strawberry.fastapi import GraphQLRouter
from strawberry.subscriptions import GRAPHQL_TRANSPORT_WS_PROTOCOL, GRAPHQL_WS_PROTOCOL

from pgapi import __version__
from pgapi.catalog.introspector import CatalogIntrospector
from pgapi.catalog.models import DatabaseCatalog
from pgapi.config import GatewayConfig
from pgapi.db import create_database_engine
from pgapi.errors import GatewayStartupError
from pgapi.graphql.builder import SchemaBuilder, export_schema
from pgapi.graphql.context import GatewayContext
from pgapi.graphql.subscriptions import NotificationSource, notification_source_for
from pgapi.plugins import load_plugins
from pgapi.server.watch import SchemaWatcher

logger = logging.getLogger(__name__)


def create_app(
    config: GatewayConfig,
    introspector: Optional[CatalogIntrospector] = None,
    engine: Optional[Engine] = None,
    notifications: Optional[NotificationSource] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Introspects the database, derives the GraphQL schema and exports it
    before returning, so a broken database fails here rather than on the
    first request.

    Args:
        config: Gateway options
        introspector: Catalog source; built from ``config`` when omitted
        engine: Serving engine; built from ``config.connection_string`` when omitted
        notifications: Source for subscriptions; PostgreSQL LISTEN/NOTIFY by default

    Returns:
        FastAPI application

    Raises:
        GatewayStartupError: If no database connection string is configured
    """
    # Engines created here are disposed at shutdown; a caller-supplied engine is left alone
    owned_engines: list[Engine] = []
    if engine is None:
        if not config.connection_string:
            raise GatewayStartupError("DATABASE_URL is not set; cannot connect to the database")
        engine = create_database_engine(config.connection_string)
        owned_engines.append(engine)

    if introspector is None:
        owner_engine = engine
        if config.owner_connection_string and config.owner_connection_string != config.connection_string:
            owner_engine = create_database_engine(config.owner_connection_string)
            owned_engines.append(owner_engine)
        introspector = CatalogIntrospector(
            owner_engine,
            schemas=config.schemas,
            serving_engine=engine,
            enforce_rbac=config.enforce_rbac,
        )

    if notifications is None and config.subscriptions:
        notifications = notification_source_for(config.connection_string)

    plugins = load_plugins(config.plugins)

    def build(catalog: DatabaseCatalog):
        schema = SchemaBuilder(catalog, config, plugins=plugins, notifications=notifications).build()
        if config.schema_export_path is not None:
            export_schema(schema, config.schema_export_path)
        return schema

    try:
        catalog = introspector.introspect()
        schema = build(catalog)
    except Exception:
        _dispose(owned_engines)
        raise

    subscription_protocols = (
        (GRAPHQL_TRANSPORT_WS_PROTOCOL, GRAPHQL_WS_PROTOCOL) if config.subscriptions else ()
    )

    async def get_context() -> GatewayContext:
        return GatewayContext(engine, config)

    async def get_explorer_context() -> GatewayContext:
        return GatewayContext(engine, config, explorer=True)

    routers = [
        (config.graphql_path, GraphQLRouter(
            schema,
            context_getter=get_context,
            graphql_ide=None,
            subscription_protocols=subscription_protocols,
        )),
    ]
    if config.explorer:
        routers.append((config.explorer_path, GraphQLRouter(
            schema,
            context_getter=get_explorer_context,
            graphql_ide="graphiql",
            subscription_protocols=subscription_protocols,
        )))

    def rebuild(new_catalog: DatabaseCatalog) -> None:
        new_schema = build(new_catalog)
        for _, router in routers:
            router.schema = new_schema
        app.state.schema = new_schema
        app.state.catalog = new_catalog

    watcher = SchemaWatcher(
        introspector,
        rebuild,
        interval=config.watch_interval_seconds,
        fingerprint=catalog.fingerprint(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if config.watch_schema:
            watcher.start()
        yield
        # Shutdown
        await watcher.stop()
        _dispose(owned_engines)

    app = FastAPI(
        title="pgapi",
        description="GraphQL API generated from a database schema",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.catalog = catalog
    app.state.schema = schema
    app.state.watcher = watcher

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for path, router in routers:
        app.include_router(router, prefix=path)

    # Health check endpoint
    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "tables": len(app.state.catalog.tables),
            "functions": len(app.state.catalog.functions),
        }

    @app.get("/")
    async def root():
        return {
            "name": "pgapi",
            "version": __version__,
            "graphql": config.graphql_path,
            "graphiql": config.explorer_path if config.explorer else None,
            "health": "/health",
        }

    logger.info(
        f"GraphQL endpoint {config.graphql_path}"
        + (f", explorer {config.explorer_path}" if config.explorer else "")
    )
    return app


def _dispose(engines: list[Engine]) -> None:
    for engine in engines:
        engine.dispose()
