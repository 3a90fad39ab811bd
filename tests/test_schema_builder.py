# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for GraphQL schema derivation."""

import dataclasses

import pytest
from graphql import GraphQLNonNull

from pgapi.catalog.models import (
    ColumnInfo,
    ColumnType,
    DatabaseCatalog,
    EnumInfo,
    FunctionArgument,
    FunctionInfo,
    TableInfo,
)
from pgapi.config import GatewayConfig
from pgapi.graphql.builder import SchemaBuilder, export_schema, print_schema


def build(catalog, **options):
    options.setdefault("watch_schema", False)
    return SchemaBuilder(catalog, GatewayConfig(**options)).build()


def fields(schema, type_name: str) -> dict:
    return schema._schema.get_type(type_name).fields


def enum_values(schema, type_name: str) -> set[str]:
    return set(schema._schema.get_type(type_name).values)


class TestTableTypes:
    """Object, connection and input types for the blog tables."""

    def test_object_types(self, catalog):
        schema = build(catalog)
        assert set(fields(schema, "User")) == {"id", "name", "email", "posts", "profile"}
        assert set(fields(schema, "Post")) == {"id", "authorId", "title", "body", "views", "author"}
        assert set(fields(schema, "Profile")) == {"id", "userId", "bio", "user"}

    def test_nullability_follows_columns(self, catalog):
        user = fields(build(catalog), "User")
        assert isinstance(user["id"].type, GraphQLNonNull)
        assert isinstance(user["name"].type, GraphQLNonNull)
        assert not isinstance(user["email"].type, GraphQLNonNull)

    def test_forward_relation_is_nullable(self, catalog):
        post = fields(build(catalog), "Post")
        assert not isinstance(post["author"].type, GraphQLNonNull)
        assert str(post["author"].type) == "User"

    def test_connection_type(self, catalog):
        schema = build(catalog)
        assert set(fields(schema, "UsersConnection")) == {"nodes", "edges", "pageInfo", "totalCount"}
        assert set(fields(schema, "UsersEdge")) == {"cursor", "node"}
        assert set(fields(schema, "PageInfo")) == {"hasNextPage", "hasPreviousPage", "startCursor", "endCursor"}

    def test_connection_arguments(self, catalog):
        users = fields(build(catalog), "Query")["users"]
        assert set(users.args) == {"first", "offset", "after", "orderBy", "condition"}

    def test_root_query_fields(self, catalog):
        query = fields(build(catalog), "Query")
        assert set(query) == {
            "query",
            "users", "user", "userByEmail",
            "posts", "post",
            "profiles", "profile", "profileByUserId",
        }
        assert set(query["userByEmail"].args) == {"email"}
        assert isinstance(query["user"].args["id"].type, GraphQLNonNull)

    def test_mutations(self, catalog):
        mutation = fields(build(catalog), "Mutation")
        assert {
            "createUser", "updateUser", "updateUserByEmail", "deleteUser", "deleteUserByEmail",
            "createPost", "updatePost", "deletePost",
        } <= set(mutation)
        assert set(mutation["updateUser"].args) == {"id", "patch"}

    def test_input_types(self, catalog):
        schema = build(catalog)
        user_input = schema._schema.get_type("UserInput").fields
        assert isinstance(user_input["name"].type, GraphQLNonNull)
        assert not isinstance(user_input["id"].type, GraphQLNonNull)  # rowid default
        patch = schema._schema.get_type("UserPatch").fields
        assert not any(isinstance(f.type, GraphQLNonNull) for f in patch.values())

    def test_default_naming_without_plugins(self, catalog):
        schema = build(catalog, plugins=())
        query = fields(schema, "Query")
        assert {"allUsers", "userById", "userByEmail", "allPosts", "postById"} <= set(query)
        assert "userByAuthorId" in fields(schema, "Post")
        assert "postsByAuthorId" in fields(schema, "User")
        assert "updateUserById" in fields(schema, "Mutation")


class TestIndexHints:

    def test_only_indexed_columns_filter_and_order(self, catalog):
        schema = build(catalog)
        assert set(schema._schema.get_type("UserCondition").fields) == {"id", "email"}
        assert enum_values(schema, "UsersOrderBy") == {
            "NATURAL", "PRIMARY_KEY_ASC", "PRIMARY_KEY_DESC",
            "ID_ASC", "ID_DESC", "EMAIL_ASC", "EMAIL_DESC",
        }
        assert set(schema._schema.get_type("PostCondition").fields) == {"id", "authorId", "title"}

    def test_without_index_hints(self, catalog):
        schema = build(catalog, use_index_hints=False)
        assert set(schema._schema.get_type("UserCondition").fields) == {"id", "name", "email"}
        assert "VIEWS_DESC" in enum_values(schema, "PostsOrderBy")

    def test_back_relation_needs_index(self, catalog):
        posts = catalog.table(None, "posts")
        unindexed = dataclasses.replace(posts, indexes=(("id",),))
        catalog = dataclasses.replace(
            catalog, tables=tuple(unindexed if t.name == "posts" else t for t in catalog.tables)
        )
        assert "posts" not in fields(build(catalog), "User")
        assert "posts" in fields(build(catalog, use_index_hints=False), "User")


class TestLegacyRelations:

    def test_omit(self, catalog):
        user = fields(build(catalog, legacy_relations="omit"), "User")
        assert "profile" in user
        assert "profiles" not in user

    def test_deprecated(self, catalog):
        user = fields(build(catalog, legacy_relations="deprecated"), "User")
        assert "profile" in user
        assert user["profiles"].deprecation_reason == "Please use profile instead"

    def test_only(self, catalog):
        user = fields(build(catalog, legacy_relations="only"), "User")
        assert "profile" not in user
        assert user["profiles"].deprecation_reason is None


class TestSmartTagsAndPrivileges:

    def _replace_table(self, catalog, name, **changes):
        return dataclasses.replace(catalog, tables=tuple(
            dataclasses.replace(t, **changes) if t.name == name else t for t in catalog.tables
        ))

    def test_omit_table(self, catalog):
        catalog = self._replace_table(catalog, "profiles", comment="@omit")
        schema = build(catalog)
        assert schema._schema.get_type("Profile") is None
        assert "profile" not in fields(schema, "User")

    def test_omit_mutations(self, catalog):
        catalog = self._replace_table(catalog, "users", comment="@omit create,delete")
        mutation = fields(build(catalog), "Mutation")
        assert "createUser" not in mutation
        assert "deleteUser" not in mutation
        assert "updateUser" in mutation

    def test_comment_becomes_description(self, catalog):
        catalog = self._replace_table(catalog, "posts", comment="A blog post.")
        assert build(catalog)._schema.get_type("Post").description == "A blog post."

    def test_hidden_column(self, catalog):
        users = catalog.table(None, "users")
        columns = tuple(
            dataclasses.replace(c, privileges=frozenset({"insert"})) if c.name == "email" else c
            for c in users.columns
        )
        catalog = self._replace_table(catalog, "users", columns=columns)
        schema = build(catalog)
        assert "email" not in fields(schema, "User")
        assert "userByEmail" not in fields(schema, "Query")

    def test_read_only_table(self, catalog):
        catalog = self._replace_table(catalog, "users", privileges=frozenset({"select"}))
        schema = build(catalog)
        mutation = fields(schema, "Mutation")
        assert not any(name.endswith("User") or "UserBy" in name for name in mutation)
        assert schema._schema.get_type("UserInput") is None

    def test_view_has_no_mutations(self):
        view = TableInfo(
            schema=None, name="reports", kind="view",
            columns=(ColumnInfo("title", ColumnType("text")),),
            privileges=frozenset({"select"}),
        )
        schema = build(DatabaseCatalog(dialect="sqlite", tables=(view,)))
        assert "reports" in fields(schema, "Query")
        assert schema._schema.mutation_type is None


class TestFunctionsAndEnums:

    def _catalog(self):
        status = EnumInfo(schema="public", name="post_status", values=("draft", "published"))
        posts = TableInfo(
            schema="public", name="posts", primary_key=("id",), indexes=(("id",),),
            columns=(
                ColumnInfo("id", ColumnType("int"), nullable=False, has_default=True),
                ColumnInfo("status", ColumnType("enum", "post_status", enum_name="post_status")),
                ColumnInfo("metadata", ColumnType("json", "jsonb")),
                ColumnInfo("score", ColumnType("bigint")),
            ),
        )
        functions = (
            FunctionInfo(
                schema="public", name="search_posts", volatility="stable", returns_set=True,
                arguments=(FunctionArgument("search", ColumnType("text")),),
                return_table=("public", "posts"),
            ),
            FunctionInfo(
                schema="public", name="add_numbers", volatility="immutable",
                arguments=(
                    FunctionArgument("a", ColumnType("int")),
                    FunctionArgument("b", ColumnType("int"), has_default=True),
                ),
                return_type=ColumnType("int"),
            ),
            FunctionInfo(
                schema="public", name="publish_all", volatility="volatile",
                return_type=ColumnType("int"),
            ),
            FunctionInfo(
                schema="public", name="secret", volatility="stable",
                return_type=ColumnType("int"), executable=False,
            ),
        )
        return DatabaseCatalog(dialect="postgresql", tables=(posts,), functions=functions, enums=(status,))

    def test_function_placement(self):
        schema = build(self._catalog())
        query = fields(schema, "Query")
        assert "searchPosts" in query
        assert "addNumbers" in query
        assert "secret" not in query
        assert "publishAll" in fields(schema, "Mutation")

    def test_function_arguments(self):
        add = fields(build(self._catalog()), "Query")["addNumbers"]
        assert isinstance(add.args["a"].type, GraphQLNonNull)
        assert not isinstance(add.args["b"].type, GraphQLNonNull)

    def test_setof_nullability(self):
        search = fields(build(self._catalog()), "Query")["searchPosts"]
        assert str(search.type) == "[Post!]!"
        search = fields(build(self._catalog(), setof_functions_contain_nulls=True), "Query")["searchPosts"]
        assert str(search.type) == "[Post]!"

    def test_enum_type(self):
        schema = build(self._catalog())
        assert enum_values(schema, "PostStatus") == {"DRAFT", "PUBLISHED"}
        assert str(fields(schema, "Post")["status"].type) == "PostStatus"

    def test_scalars(self):
        schema = build(self._catalog())
        assert str(fields(schema, "Post")["score"].type) == "BigInt"
        assert str(fields(schema, "Post")["metadata"].type) == "JSON"
        schema = build(self._catalog(), dynamic_json=False)
        assert str(fields(schema, "Post")["metadata"].type) == "String"


class TestSchemaExport:

    def test_empty_database(self):
        schema = build(DatabaseCatalog(dialect="sqlite"))
        assert set(fields(schema, "Query")) == {"query"}
        assert schema._schema.mutation_type is None
        assert "type Query" in print_schema(schema)

    def test_export_overwrites(self, catalog, tmp_path):
        path = tmp_path / "out" / "schema.graphql"
        path.parent.mkdir()
        path.write_text("stale")
        export_schema(build(catalog), path)
        sdl = path.read_text()
        assert "stale" not in sdl
        assert "type User" in sdl
        assert sdl.endswith("\n")

    def test_no_subscription_without_source(self, catalog):
        assert build(catalog)._schema.subscription_type is None

    def test_listen_subscription(self, catalog):
        class Source:
            async def subscribe(self, channel):
                yield "hello"

        schema = SchemaBuilder(catalog, GatewayConfig(watch_schema=False), notifications=Source()).build()
        listen = fields(schema, "Subscription")["listen"]
        assert set(listen.args) == {"topic"}
        assert str(listen.type) == "ListenPayload!"
