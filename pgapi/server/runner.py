# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Start the gateway: build the app, bind the port, serve until killed."""

import logging
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from rich.console import Console

from pgapi.config import GatewayConfig, load_configuration, read_environment, resolve_port
from pgapi.errors import GatewayStartupError

logger = logging.getLogger(__name__)

console = Console()


class GatewayServer(uvicorn.Server):
    """uvicorn server that reports once the listening socket is bound."""

    def __init__(self, config: uvicorn.Config, on_ready: Callable[[], None]):
        super().__init__(config)
        self.on_ready = on_ready

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if not self.should_exit:
            self.on_ready()


def announce(port: int, path: str) -> None:
    """The single startup line on stdout."""
    console.print(f"Running on localhost:{port}{path}", markup=False, highlight=False, soft_wrap=True)


def start(config: GatewayConfig, port: int, app: Optional[FastAPI] = None, log_level: str = "info") -> None:
    """Serve the GraphQL API on ``config.host:port`` until the process is stopped.

    There are no retries: a missing connection string raises before
    anything is bound, and a busy port makes uvicorn exit the process.

    Raises:
        GatewayStartupError: If DATABASE_URL is not configured
    """
    if not config.connection_string:
        raise GatewayStartupError("DATABASE_URL is not set; cannot connect to the database")

    if app is None:
        from pgapi.server.app import create_app
        app = create_app(config)

    server = GatewayServer(
        uvicorn.Config(app, host=config.host, port=port, log_level=log_level),
        on_ready=lambda: announce(port, config.explorer_path if config.explorer else config.graphql_path),
    )
    server.run()


def run() -> None:
    """Read the environment and start serving."""
    env = read_environment()
    start(load_configuration(env), resolve_port(env))
