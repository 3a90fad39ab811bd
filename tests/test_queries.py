# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""End-to-end tests: GraphQL requests against the blog database."""

import threading
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import Engine

from pgapi.config import GatewayConfig, build_configuration
from pgapi.db import create_database_engine
from pgapi.errors import IntrospectionError
from pgapi.graphql.context import Operation
from pgapi.server.app import create_app


class TestReadQueries:

    def test_all_rows(self, graphql):
        body = graphql("{ users(orderBy: [PRIMARY_KEY_ASC]) { totalCount nodes { id name email } } }")
        assert "errors" not in body
        users = body["data"]["users"]
        assert users["totalCount"] == 3
        assert users["nodes"] == [
            {"id": 1, "name": "Ada", "email": "ada@example.com"},
            {"id": 2, "name": "Grace", "email": "grace@example.com"},
            {"id": 3, "name": "Linus", "email": None},
        ]

    def test_nested_query_field(self, graphql):
        body = graphql("{ query { users { totalCount } } }")
        assert body["data"]["query"]["users"]["totalCount"] == 3

    def test_unique_lookups(self, graphql):
        body = graphql("""
            {
              user(id: 2) { name }
              userByEmail(email: "ada@example.com") { id }
              missing: user(id: 99) { name }
            }
        """)
        assert body["data"] == {
            "user": {"name": "Grace"},
            "userByEmail": {"id": 1},
            "missing": None,
        }

    def test_order_by_column(self, graphql):
        body = graphql("{ users(orderBy: [EMAIL_DESC]) { nodes { name } } }")
        # SQLite treats NULL as the smallest value
        assert [n["name"] for n in body["data"]["users"]["nodes"]] == ["Grace", "Ada", "Linus"]


class TestPagination:

    QUERY = """
        query Page($first: Int, $after: Cursor) {
          users(first: $first, after: $after, orderBy: [ID_ASC]) {
            totalCount
            edges { cursor node { id } }
            pageInfo { hasNextPage hasPreviousPage startCursor endCursor }
          }
        }
    """

    def test_first_page(self, graphql):
        users = graphql(self.QUERY, {"first": 2})["data"]["users"]
        assert [e["node"]["id"] for e in users["edges"]] == [1, 2]
        assert users["totalCount"] == 3
        assert users["pageInfo"]["hasNextPage"] is True
        assert users["pageInfo"]["hasPreviousPage"] is False
        assert users["pageInfo"]["startCursor"] == users["edges"][0]["cursor"]
        assert users["pageInfo"]["endCursor"] == users["edges"][-1]["cursor"]

    def test_next_page_after_cursor(self, graphql):
        first = graphql(self.QUERY, {"first": 2})["data"]["users"]
        second = graphql(self.QUERY, {"first": 2, "after": first["pageInfo"]["endCursor"]})["data"]["users"]
        assert [e["node"]["id"] for e in second["edges"]] == [3]
        assert second["pageInfo"]["hasNextPage"] is False
        assert second["pageInfo"]["hasPreviousPage"] is True

    def test_offset(self, graphql):
        body = graphql("{ users(offset: 1, orderBy: [ID_ASC]) { nodes { id } } }")
        assert [n["id"] for n in body["data"]["users"]["nodes"]] == [2, 3]

    def test_empty_page(self, graphql):
        users = graphql(self.QUERY, {"first": 0})["data"]["users"]
        assert users["edges"] == []
        assert users["pageInfo"]["startCursor"] is None
        assert users["pageInfo"]["hasNextPage"] is True

    def test_invalid_cursor(self, graphql):
        body = graphql(self.QUERY, {"first": 2, "after": "not-a-cursor"})
        assert body["errors"]
        assert body["data"]["users"] is None

    def test_negative_first(self, graphql):
        body = graphql(self.QUERY, {"first": -1})
        assert "must not be negative" in body["errors"][0]["message"]


class TestConditions:

    def test_equality(self, graphql):
        body = graphql('{ users(condition: {email: "ada@example.com"}) { nodes { name } } }')
        assert body["data"]["users"]["nodes"] == [{"name": "Ada"}]

    def test_null_means_is_null(self, graphql):
        body = graphql("{ users(condition: {email: null}) { totalCount nodes { name } } }")
        assert body["data"]["users"] == {"totalCount": 1, "nodes": [{"name": "Linus"}]}

    def test_condition_on_relation(self, graphql):
        body = graphql("""
            {
              user(id: 1) {
                match: posts(condition: {title: "Notes"}) { totalCount }
                conflict: posts(condition: {authorId: 2}) { totalCount nodes { id } }
              }
            }
        """)
        assert body["data"]["user"]["match"]["totalCount"] == 1
        assert body["data"]["user"]["conflict"] == {"totalCount": 0, "nodes": []}


class TestRelations:

    def test_forward_relation(self, graphql):
        body = graphql("{ post(id: 3) { title author { name } } }")
        assert body["data"]["post"] == {"title": "Compilers", "author": {"name": "Grace"}}

    def test_backward_relations(self, graphql):
        body = graphql("""
            {
              ada: user(id: 1) {
                posts(orderBy: [ID_ASC]) { totalCount nodes { title } }
                profile { bio }
              }
              linus: user(id: 3) {
                posts { totalCount }
                profile { bio }
              }
            }
        """)
        assert body["data"]["ada"] == {
            "posts": {"totalCount": 2, "nodes": [{"title": "Engines"}, {"title": "Notes"}]},
            "profile": {"bio": "Mathematician"},
        }
        assert body["data"]["linus"] == {"posts": {"totalCount": 0}, "profile": None}

    def test_relation_from_profile(self, graphql):
        body = graphql("{ profileByUserId(userId: 1) { user { email } } }")
        assert body["data"]["profileByUserId"]["user"]["email"] == "ada@example.com"


class TestMutations:

    def test_create(self, graphql):
        body = graphql("""
            mutation {
              createUser(input: {name: "Barbara", email: "barbara@example.com"}) { id name }
            }
        """)
        assert "errors" not in body
        assert body["data"]["createUser"] == {"id": 4, "name": "Barbara"}
        assert graphql("{ users { totalCount } }")["data"]["users"]["totalCount"] == 4

    def test_update(self, graphql):
        body = graphql('mutation { updateUser(id: 1, patch: {name: "Ada Lovelace"}) { id name email } }')
        assert body["data"]["updateUser"] == {"id": 1, "name": "Ada Lovelace", "email": "ada@example.com"}
        assert graphql("{ user(id: 1) { name } }")["data"]["user"]["name"] == "Ada Lovelace"

    def test_update_by_unique_key(self, graphql):
        body = graphql("""
            mutation {
              updateUserByEmail(email: "grace@example.com", patch: {email: null}) { id email }
            }
        """)
        assert body["data"]["updateUserByEmail"] == {"id": 2, "email": None}

    def test_empty_patch_returns_row(self, graphql):
        body = graphql("mutation { updateUser(id: 2, patch: {}) { name } }")
        assert body["data"]["updateUser"] == {"name": "Grace"}

    def test_update_missing_row(self, graphql):
        body = graphql('mutation { updateUser(id: 99, patch: {name: "Nobody"}) { id } }')
        assert body["data"]["updateUser"] is None

    def test_delete(self, graphql):
        body = graphql("mutation { deletePost(id: 3) { title } }")
        assert body["data"]["deletePost"] == {"title": "Compilers"}
        assert graphql("{ posts { totalCount } }")["data"]["posts"]["totalCount"] == 2

    def test_unique_violation_reports_database_message(self, graphql):
        body = graphql("""
            mutation {
              createUser(input: {name: "Impostor", email: "ada@example.com"}) { id }
            }
        """)
        error = body["errors"][0]
        assert "UNIQUE constraint failed" in error["message"]
        assert isinstance(error["extensions"]["stack"], list)
        assert graphql("{ users { totalCount } }")["data"]["users"]["totalCount"] == 3

    def test_failed_mutation_keeps_earlier_ones(self, graphql):
        body = graphql("""
            mutation {
              ok: createUser(input: {name: "Barbara"}) { id }
              bad: createPost(input: {authorId: 99, title: "Orphan"}) { id }
            }
        """)
        assert body["data"]["ok"] == {"id": 4}
        assert body["errors"][0]["path"] == ["bad"]
        assert graphql("{ user(id: 4) { name } }")["data"]["user"]["name"] == "Barbara"


class TestHttp:
    """Transport behaviour of the FastAPI application."""

    def test_batched_operations(self, client):
        response = client.post("/graphql", json=[
            {"query": "{ user(id: 1) { name } }"},
            {"query": "{ user(id: 2) { name } }"},
        ])
        assert response.status_code == 200
        assert [r["data"]["user"]["name"] for r in response.json()] == ["Ada", "Grace"]

    def test_explain_on_request(self, graphql):
        body = graphql("{ user(id: 1) { name } }", headers={"X-Explain": "on"})
        explain = body["extensions"]["explain"]
        assert len(explain) == 1
        assert explain[0]["query"].startswith("SELECT")
        assert explain[0]["plan"]

    def test_no_explain_by_default(self, graphql):
        body = graphql("{ user(id: 1) { name } }")
        assert "explain" not in body.get("extensions", {})

    def test_explain_through_explorer(self, client):
        response = client.post("/graphiql", json={"query": "{ user(id: 1) { name } }"})
        assert response.status_code == 200
        assert "explain" in response.json()["extensions"]

    def test_explain_denied(self, database_url, tmp_path):
        config = GatewayConfig(
            connection_string=database_url,
            schema_export_path=tmp_path / "schema.graphql",
            watch_schema=False,
            allow_explain=lambda request: False,
        )
        with TestClient(create_app(config)) as client:
            response = client.post(
                "/graphql", json={"query": "{ user(id: 1) { name } }"}, headers={"X-Explain": "on"}
            )
        assert "explain" not in response.json().get("extensions", {})

    def test_cors_any_origin(self, client):
        response = client.options("/graphql", headers={
            "Origin": "https://somewhere.example",
            "Access-Control-Request-Method": "POST",
        })
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] in ("*", "https://somewhere.example")

        response = client.post(
            "/graphql", json={"query": "{ __typename }"}, headers={"Origin": "https://elsewhere.example"}
        )
        assert response.headers["access-control-allow-origin"] in ("*", "https://elsewhere.example")

    def test_explorer_page(self, client):
        response = client.get("/graphiql", headers={"Accept": "text/html"})
        assert response.status_code == 200
        assert "graphiql" in response.text.lower()

    def test_no_explorer_on_graphql_path(self, client):
        response = client.get("/graphql", headers={"Accept": "text/html"})
        assert response.status_code != 200 or "graphiql" not in response.text.lower()

    def test_schema_exported(self, client, config):
        sdl = config.schema_export_path.read_text()
        assert "type User" in sdl
        assert "users(" in sdl

    def test_health_and_index(self, client):
        assert client.get("/health").json() == {"status": "healthy", "tables": 3, "functions": 0}
        index = client.get("/").json()
        assert index["graphql"] == "/graphql"
        assert index["graphiql"] == "/graphiql"


class TestExecutionThreads:
    """SQL runs in worker threads, one Operation per batched operation."""

    def _record(self, monkeypatch) -> list:
        calls = []
        execute = Operation.execute

        def recording(self, statement, parameters=None):
            calls.append((self, threading.current_thread()))
            return execute(self, statement, parameters)

        monkeypatch.setattr(Operation, "execute", recording)
        return calls

    def test_sql_off_event_loop(self, client, monkeypatch):
        calls = self._record(monkeypatch)
        loop_thread = client.portal.call(threading.current_thread)

        response = client.post("/graphql", json={"query": "{ users { totalCount nodes { id } } }"})
        assert response.json()["data"]["users"]["totalCount"] == 3
        assert len(calls) >= 2
        assert all(thread is not loop_thread for _, thread in calls)

    def test_batched_operations_use_own_operation(self, client, monkeypatch):
        calls = self._record(monkeypatch)
        response = client.post("/graphql", json=[
            {"query": "{ user(id: 1) { name } }"},
            {"query": "{ user(id: 2) { name } }"},
        ])
        assert [r.get("errors") for r in response.json()] == [None, None]
        assert len({operation for operation, _ in calls}) == 2


class TestEmptyDatabase:

    def test_start_against_empty_database(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'empty.db'}"
        engine = create_database_engine(url)
        engine.connect().close()
        engine.dispose()

        # Environment-only options: the schema lands in the working directory
        monkeypatch.chdir(tmp_path)
        config = build_configuration({"DATABASE_URL": url})
        with TestClient(create_app(config)) as client:
            assert client.get("/graphiql", headers={"Accept": "text/html"}).status_code == 200
            body = client.post("/graphql", json={"query": "{ query { __typename } }"}).json()
            assert body["data"] == {"query": {"__typename": "Query"}}

        export_path = tmp_path / "schema.graphql"
        assert export_path.exists()
        assert "type Query" in export_path.read_text()


class TestEngineLifetime:
    """Shutdown disposes only the engines the application created."""

    def _record_dispose(self, monkeypatch) -> list:
        disposed = []
        dispose = Engine.dispose

        def recording(self, *args, **kwargs):
            disposed.append(self)
            return dispose(self, *args, **kwargs)

        monkeypatch.setattr(Engine, "dispose", recording)
        return disposed

    def test_caller_engine_kept(self, config, database_url, monkeypatch):
        disposed = self._record_dispose(monkeypatch)
        engine = create_database_engine(database_url)
        with TestClient(create_app(config, engine=engine)) as client:
            assert client.post("/graphql", json={"query": "{ user(id: 1) { name } }"}).status_code == 200
        assert engine not in disposed

        with engine.connect() as conn:
            assert conn.execute(text("SELECT count(*) FROM users")).scalar() == 3
        engine.dispose()

    def test_created_engines_disposed(self, database_url, tmp_path, monkeypatch):
        disposed = self._record_dispose(monkeypatch)
        created = []

        def create(url):
            engine = create_database_engine(url)
            created.append(engine)
            return engine

        monkeypatch.setattr("pgapi.server.app.create_database_engine", create)
        config = GatewayConfig(
            connection_string=database_url,
            owner_connection_string=database_url + "?timeout=10",
            schema_export_path=tmp_path / "schema.graphql",
            watch_schema=False,
        )
        with TestClient(create_app(config)):
            assert len(created) == 2
            assert disposed == []
        assert set(disposed) == set(created)

    def test_disposed_when_introspection_fails(self, config, monkeypatch):
        disposed = self._record_dispose(monkeypatch)
        introspector = Mock()
        introspector.introspect.side_effect = IntrospectionError("unreachable")
        with pytest.raises(IntrospectionError):
            create_app(config, introspector=introspector)
        assert len(disposed) == 1
