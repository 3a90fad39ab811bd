# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Pytest configuration and fixtures.

Every test gets its own SQLite database file with a small blog schema:

    users     (id, name, email UNIQUE)
    posts     (id, author_id -> users.id [indexed], title, body, views)
    profiles  (id, user_id -> users.id UNIQUE, bio)
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import Engine

from pgapi.catalog import CatalogIntrospector, DatabaseCatalog
from pgapi.config import GatewayConfig
from pgapi.db import create_database_engine

BLOG_DDL = [
    """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE
    )
    """,
    """
    CREATE TABLE posts (
        id INTEGER PRIMARY KEY,
        author_id INTEGER NOT NULL REFERENCES users(id),
        title TEXT NOT NULL,
        body TEXT,
        views INTEGER DEFAULT 0
    )
    """,
    "CREATE INDEX posts_author_id_idx ON posts (author_id)",
    "CREATE INDEX posts_title_idx ON posts (title)",
    """
    CREATE TABLE profiles (
        id INTEGER PRIMARY KEY,
        user_id INTEGER NOT NULL UNIQUE REFERENCES users(id),
        bio TEXT
    )
    """,
]

BLOG_ROWS = [
    "INSERT INTO users (id, name, email) VALUES (1, 'Ada', 'ada@example.com')",
    "INSERT INTO users (id, name, email) VALUES (2, 'Grace', 'grace@example.com')",
    "INSERT INTO users (id, name, email) VALUES (3, 'Linus', NULL)",
    "INSERT INTO posts (id, author_id, title, body, views) VALUES (1, 1, 'Engines', 'Analytical', 10)",
    "INSERT INTO posts (id, author_id, title, body, views) VALUES (2, 1, 'Notes', NULL, 30)",
    "INSERT INTO posts (id, author_id, title, body, views) VALUES (3, 2, 'Compilers', 'COBOL', 20)",
    "INSERT INTO profiles (id, user_id, bio) VALUES (1, 1, 'Mathematician')",
]


@pytest.fixture
def database_url(tmp_path) -> str:
    """URL of a freshly created blog database."""
    path = tmp_path / "blog.db"
    url = f"sqlite:///{path}"
    engine = create_database_engine(url)
    with engine.begin() as conn:
        for statement in BLOG_DDL + BLOG_ROWS:
            conn.execute(text(statement))
    engine.dispose()
    return url


@pytest.fixture
def engine(database_url) -> Generator[Engine, None, None]:
    engine = create_database_engine(database_url)
    yield engine
    engine.dispose()


@pytest.fixture
def catalog(engine) -> DatabaseCatalog:
    return CatalogIntrospector(engine).introspect()


@pytest.fixture
def config(database_url, tmp_path) -> GatewayConfig:
    """Options for the test database; no schema watching."""
    return GatewayConfig(
        connection_string=database_url,
        schema_export_path=tmp_path / "schema.graphql",
        watch_schema=False,
    )


@pytest.fixture
def app(config):
    from pgapi.server.app import create_app
    return create_app(config)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as client:
        yield client


@pytest.fixture
def graphql(client):
    """POST a query to /graphql and return the decoded response body."""
    def _query(query: str, variables: dict = None, headers: dict = None) -> dict:
        payload = {"query": query}
        if variables is not None:
            payload["variables"] = variables
        response = client.post("/graphql", json=payload, headers=headers or {})
        assert response.status_code == 200, response.text
        return response.json()
    return _query
