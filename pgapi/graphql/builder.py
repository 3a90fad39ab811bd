# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Derive a strawberry schema from a DatabaseCatalog.

Types reference each other in cycles (a user has posts, a post has an
author), so every class is created empty first, then filled with fields,
and only decorated with ``strawberry.type`` once all of them exist.

Usage:
    catalog = CatalogIntrospector(engine).introspect()
    schema = SchemaBuilder(catalog, config).build()
    export_schema(schema, Path("schema.graphql"))
"""

import inspect
import keyword
import logging
from dataclasses import MISSING, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Callable, Optional, Sequence

import strawberry
from sqlalchemy import MetaData, Table
from strawberry.schema.config import StrawberryConfig

from pgapi.catalog.models import ColumnInfo, DatabaseCatalog, ForeignKeyInfo, FunctionInfo, TableInfo
from pgapi.config import GatewayConfig
from pgapi.graphql import sql
from pgapi.graphql.context import GatewayContext, Operation
from pgapi.graphql.extensions import DatabaseTransaction, ErrorDetailsExtension, ExplainExtension
from pgapi.graphql.subscriptions import NotificationSource, listen_resolver
from pgapi.graphql.types import (
    COMPARABLE_KINDS,
    Cursor,
    PageInfo,
    decode_cursor,
    encode_cursor,
    from_graphql,
    python_type,
    to_graphql,
)
from pgapi.inflection import Inflector
from pgapi.plugins import GatewayPlugin, apply_plugins, load_plugins

logger = logging.getLogger(__name__)

NATURAL = "NATURAL"
_RESERVED_PARAMETERS = frozenset({"root", "info", "self", "parent"})
_RESERVED_TYPES = frozenset({
    "Query", "Mutation", "Subscription", "PageInfo", "ListenPayload",
    "BigInt", "BigFloat", "Cursor", "JSON", "Base64", "Date", "DateTime", "Time", "UUID",
})


# ============== Dynamic types ==============

class TypeSpec:
    """A class under construction that becomes a strawberry type or input.

    Python attribute names are generated; GraphQL names are always given
    explicitly so they come from the inflector only.
    """

    def __init__(self, name: str, description: Optional[str] = None, is_input: bool = False):
        self.name = name
        self.description = description
        self.is_input = is_input
        self.annotations: dict[str, Any] = {}
        self.cls: type = type(name, (), {"__module__": __name__, "__annotations__": self.annotations})
        self.field_names: set[str] = set()

    @property
    def has_fields(self) -> bool:
        return bool(self.field_names)

    def add(
        self,
        name: str,
        annotation: Any = None,
        *,
        resolver: Optional[Callable] = None,
        fallback: Optional[str] = None,
        attr: Optional[str] = None,
        description: Optional[str] = None,
        deprecation_reason: Optional[str] = None,
        default: Any = MISSING,
    ) -> Optional[str]:
        """Add a field; returns its attribute name, or None if the name is taken."""
        if name in self.field_names:
            if fallback and fallback not in self.field_names:
                logger.warning(f"Field {self.name}.{name} already exists; using {fallback}")
                name = fallback
            else:
                logger.warning(f"Field {self.name}.{name} already exists; skipped")
                return None

        self.field_names.add(name)
        attr = attr or f"f_{len(self.field_names)}"
        kwargs: dict[str, Any] = {
            "name": name,
            "description": description,
            "deprecation_reason": deprecation_reason,
        }
        if default is not MISSING:
            kwargs["default"] = default

        if resolver is not None:
            setattr(self.cls, attr, strawberry.field(resolver=resolver, **kwargs))
        else:
            self.annotations[attr] = annotation
            setattr(self.cls, attr, strawberry.field(**kwargs))
        return attr

    def decorate(self) -> type:
        if self.is_input:
            return strawberry.input(self.cls, name=self.name, description=self.description)
        return strawberry.type(self.cls, name=self.name, description=self.description)


@dataclass
class Arg:
    """A resolver argument."""
    name: str
    annotation: Any
    required: bool = False
    description: Optional[str] = None


def make_resolver(
    impl: Callable[[Any, strawberry.Info, dict[str, Any]], Any],
    arguments: Sequence[Arg],
    return_type: Any,
) -> Callable:
    """Build a resolver whose signature strawberry reads as GraphQL arguments.

    ``impl(root, info, values)`` receives the argument values keyed by
    GraphQL name; arguments the client left out are ``strawberry.UNSET``.
    """
    parameters = [
        inspect.Parameter("root", inspect.Parameter.KEYWORD_ONLY),
        inspect.Parameter("info", inspect.Parameter.KEYWORD_ONLY, annotation=strawberry.Info),
    ]
    names: list[tuple[str, str]] = []
    for i, arg in enumerate(arguments):
        python_name = arg.name
        if not python_name.isidentifier() or keyword.iskeyword(python_name) or python_name in _RESERVED_PARAMETERS:
            python_name = f"arg_{i}"
        annotation = arg.annotation if arg.required else Optional[arg.annotation]
        parameters.append(inspect.Parameter(
            python_name,
            inspect.Parameter.KEYWORD_ONLY,
            default=inspect.Parameter.empty if arg.required else strawberry.UNSET,
            annotation=Annotated[annotation, strawberry.argument(name=arg.name, description=arg.description)],
        ))
        names.append((python_name, arg.name))

    def values_of(kwargs: dict[str, Any]) -> dict[str, Any]:
        return {name: kwargs.get(python_name, strawberry.UNSET) for python_name, name in names}

    if inspect.iscoroutinefunction(impl):
        async def resolve(**kwargs: Any) -> Any:
            return await impl(kwargs.get("root"), kwargs["info"], values_of(kwargs))
    else:
        def resolve(**kwargs: Any) -> Any:
            return impl(kwargs.get("root"), kwargs["info"], values_of(kwargs))

    resolve.__signature__ = inspect.Signature(parameters, return_annotation=return_type)
    resolve.__annotations__ = {
        p.name: p.annotation for p in parameters if p.annotation is not inspect.Parameter.empty
    }
    resolve.__annotations__["return"] = return_type
    return resolve


def _given(value: Any) -> Any:
    return None if value is strawberry.UNSET else value


def _rows_of(stmt: Any, savepoint: bool = False) -> Callable[[Operation], list[Any]]:
    """Work for GatewayContext.run: the result rows of ``stmt``, optionally inside a savepoint."""

    def work(operation: Operation) -> list[Any]:
        if not savepoint:
            return list(operation.execute(stmt).mappings())
        with operation.connection.begin_nested():
            return list(operation.execute(stmt).mappings())

    return work


# ============== Tables ==============

@dataclass
class Entity:
    """GraphQL types derived from one table or view."""
    info: TableInfo
    table: Table
    readable: list[str]
    object_spec: TypeSpec
    connection_spec: TypeSpec
    edge_spec: TypeSpec
    columns: list[tuple[str, ColumnInfo]] = field(default_factory=list)
    condition_spec: Optional[TypeSpec] = None
    condition_columns: list[tuple[str, ColumnInfo]] = field(default_factory=list)
    order_enum: Optional[type[Enum]] = None
    order_specs: dict[str, list[sql.OrderSpec]] = field(default_factory=dict)
    input_spec: Optional[TypeSpec] = None
    input_columns: list[tuple[str, ColumnInfo]] = field(default_factory=list)
    patch_spec: Optional[TypeSpec] = None
    patch_columns: list[tuple[str, ColumnInfo]] = field(default_factory=list)

    @property
    def object_type(self) -> type:
        return self.object_spec.cls


def _column_visible(column: ColumnInfo) -> bool:
    return "select" in column.privileges and not column.tags.omits("read")


class SchemaBuilder:
    """Builds the strawberry schema for a catalog.

    Args:
        catalog: Introspected database metadata
        config: Gateway options
        plugins: Plugin instances; loaded from ``config.plugins`` when omitted
        notifications: Source for the ``listen`` subscription
    """

    def __init__(
        self,
        catalog: DatabaseCatalog,
        config: GatewayConfig,
        plugins: Optional[Sequence[GatewayPlugin]] = None,
        notifications: Optional[NotificationSource] = None,
    ):
        self.config = config
        self.notifications = notifications
        if plugins is None:
            plugins = load_plugins(config.plugins)
        self.inflector, self.catalog = apply_plugins(plugins, catalog)
        self.base_inflector = Inflector()
        self.metadata = MetaData()
        self.enums: dict[str, type[Enum]] = {}
        self.entities: dict[tuple[Optional[str], str], Entity] = {}
        self.specs: list[TypeSpec] = []

    def build(self) -> strawberry.Schema:
        """Derive the schema.

        Returns:
            strawberry.Schema with the gateway extensions installed
        """
        self._build_enums()
        for table in self.catalog.tables:
            self._create_entity(table)
        for entity in self.entities.values():
            self._add_columns(entity)
        for entity in self.entities.values():
            self._add_relations(entity)
            self._add_connection_fields(entity)

        query = self._spec("Query", "The root query type.")
        query.add("query", resolver=make_resolver(lambda root, info, values: query.cls(), [], query.cls),
                  description="Exposes the root query type nested one level down.")
        mutation = self._spec("Mutation", "The root mutation type.")

        for entity in self.entities.values():
            self._add_table_queries(query, entity)
            self._add_table_mutations(mutation, entity)
        for function in self.catalog.functions:
            self._add_function(mutation if function.is_mutation else query, function)

        subscription = None
        if self.config.subscriptions and self.notifications is not None:
            subscription = self._spec("Subscription", "The root subscription type.")
            subscription.cls.listen = strawberry.subscription(
                resolver=listen_resolver(self.notifications),
                name="listen",
                description="Notifications sent with NOTIFY on channel pgapi:<topic>.",
            )
            subscription.field_names.add("listen")

        for spec in self.specs:
            if spec.has_fields:
                spec.decorate()

        config_kwargs: dict[str, Any] = {}
        if self.config.batching:
            config_kwargs["batching_config"] = {
                "enabled": True,
                "max_operations": self.config.max_batch_operations,
            }

        schema = strawberry.Schema(
            query=query.cls,
            mutation=mutation.cls if mutation.has_fields else None,
            subscription=subscription.cls if subscription is not None else None,
            types=[entity.object_type for entity in self.entities.values()],
            extensions=[DatabaseTransaction, ErrorDetailsExtension, ExplainExtension],
            config=StrawberryConfig(**config_kwargs),
        )
        logger.info(
            f"Built GraphQL schema: {len(self.entities)} tables, "
            f"{len(query.field_names)} query fields, {len(mutation.field_names)} mutations"
        )
        return schema

    def _spec(self, name: str, description: Optional[str] = None, is_input: bool = False) -> TypeSpec:
        spec = TypeSpec(name, description, is_input)
        self.specs.append(spec)
        return spec

    # ============== Enums ==============

    def _build_enums(self) -> None:
        for enum_info in self.catalog.enums:
            if not enum_info.values:
                continue
            members: dict[str, str] = {}
            for label in enum_info.values:
                name = self.inflector.enum_value(label)
                while name in members:
                    name += "_"
                members[name] = label
            type_name = self.inflector.enum_type(enum_info)
            py_enum = Enum(type_name, members)
            description = enum_info.comment
            self.enums[enum_info.name] = strawberry.enum(py_enum, name=type_name, description=description)

    def _column_type(self, column: ColumnInfo, nullable: Optional[bool] = None) -> Any:
        annotation = python_type(column.type, self.enums, self.config.dynamic_json)
        if column.nullable if nullable is None else nullable:
            return Optional[annotation]
        return annotation

    # ============== Entities ==============

    def _create_entity(self, info: TableInfo) -> None:
        if info.tags.omits("read") or "select" not in info.privileges:
            logger.debug(f"Table {info.full_name} is not readable; skipped")
            return

        readable = [c.name for c in info.columns if "select" in c.privileges]
        if not any(_column_visible(c) for c in info.columns):
            logger.warning(f"Table {info.full_name} has no visible columns; skipped")
            return

        type_name = self.inflector.table_type(info)
        if type_name in _RESERVED_TYPES or any(spec.name == type_name for spec in self.specs):
            logger.warning(f"Type {type_name} for {info.full_name} already exists; skipped")
            return

        description = info.tags.description
        entity = Entity(
            info=info,
            table=info.to_sqlalchemy(self.metadata),
            readable=readable,
            object_spec=self._spec(type_name, description),
            connection_spec=self._spec(
                self.inflector.connection_type(info),
                f"A connection to a list of `{type_name}` values.",
            ),
            edge_spec=self._spec(
                self.inflector.edge_type(info),
                f"A `{type_name}` edge in the connection.",
            ),
        )
        self.entities[info.key] = entity

    def _add_columns(self, entity: Entity) -> None:
        info = entity.info
        inflector = self.inflector
        use_index = self.config.use_index_hints

        condition = self._spec(
            inflector.condition_type(info),
            f"A condition to be used against `{entity.object_spec.name}` object types. "
            "All fields are tested for equality and combined with a logical 'and'.",
            is_input=True,
        )
        orderable: list[ColumnInfo] = []

        for column in info.columns:
            if not _column_visible(column):
                continue
            name = inflector.column(column)
            attr = entity.object_spec.add(
                name, self._column_type(column),
                fallback=self.base_inflector.column(column),
                description=column.tags.description,
            )
            if attr is not None:
                entity.columns.append((attr, column))

            comparable = column.type.kind in COMPARABLE_KINDS
            indexed = not use_index or info.is_indexed((column.name,))
            if comparable and indexed and not (column.tags.omits("filter") or info.tags.omits("filter")):
                cond_attr = condition.add(
                    name, self._column_type(column, nullable=True),
                    default=strawberry.UNSET,
                    description=f"Checks for equality with the object's `{name}` field.",
                )
                if cond_attr is not None:
                    entity.condition_columns.append((cond_attr, column))
            if comparable and indexed and not (column.tags.omits("order") or info.tags.omits("order")):
                orderable.append(column)

        if condition.has_fields:
            entity.condition_spec = condition
        self._build_order_enum(entity, orderable)

        if info.is_view:
            return
        if "insert" in info.privileges and not info.tags.omits("create"):
            entity.input_spec, entity.input_columns = self._mutation_input(entity, "insert", "create")
        if "update" in info.privileges and not info.tags.omits("update"):
            entity.patch_spec, entity.patch_columns = self._mutation_input(entity, "update", "update")

    def _build_order_enum(self, entity: Entity, columns: list[ColumnInfo]) -> None:
        info = entity.info
        specs: dict[str, list[sql.OrderSpec]] = {NATURAL: []}
        if info.primary_key:
            specs["PRIMARY_KEY_ASC"] = [(c, True) for c in info.primary_key]
            specs["PRIMARY_KEY_DESC"] = [(c, False) for c in info.primary_key]
        for column in columns:
            for ascending in (True, False):
                value = self.inflector.order_by_value(column, ascending)
                if value in specs:
                    logger.warning(f"Duplicate ordering {value} on {info.full_name}; skipped")
                    continue
                specs[value] = [(column.name, ascending)]

        type_name = self.inflector.order_by_type(info)
        py_enum = Enum(type_name, {value: value for value in specs})
        entity.order_enum = strawberry.enum(
            py_enum, name=type_name, description=f"Methods to use when ordering `{entity.object_spec.name}`."
        )
        entity.order_specs = specs

    def _mutation_input(
        self, entity: Entity, privilege: str, action: str
    ) -> tuple[Optional[TypeSpec], list[tuple[str, ColumnInfo]]]:
        """Input (create) or patch (update) type for a table."""
        info = entity.info
        is_create = action == "create"
        type_name = self.inflector.input_type(info) if is_create else self.inflector.patch_type(info)
        description = (
            f"An input for mutations affecting `{entity.object_spec.name}`"
            if is_create
            else f"Represents an update to a `{entity.object_spec.name}`. Fields that are set will be updated."
        )
        spec = self._spec(type_name, description, is_input=True)

        columns = []
        for column in info.columns:
            if privilege not in column.privileges or column.tags.omits(action):
                continue
            required = is_create and not column.nullable and not column.has_default
            attr = spec.add(
                self.inflector.column(column),
                self._column_type(column, nullable=not required),
                default=MISSING if required else strawberry.UNSET,
                description=column.tags.description,
            )
            if attr is not None:
                columns.append((attr, column))

        if not spec.has_fields:
            return None, []
        return spec, columns

    # ============== Rows ==============

    def make_row(self, entity: Entity, row: Any) -> Any:
        """Instantiate the entity's object type from a result row mapping."""
        data = dict(row)
        obj = entity.object_type(**{
            attr: to_graphql(data.get(column.name), column.type, self.enums, self.config.dynamic_json)
            for attr, column in entity.columns
        })
        obj._row = data
        return obj

    async def _fetch_one(self, context: GatewayContext, entity: Entity, where: dict[str, Any]) -> Any:
        stmt = sql.select_rows(entity.table, entity.readable, where, limit=1)
        row = await context.run(lambda operation: operation.execute(stmt).mappings().first())
        return self.make_row(entity, row) if row is not None else None

    async def _fetch_connection(
        self,
        context: GatewayContext,
        entity: Entity,
        where: Optional[dict[str, Any]],
        values: dict[str, Any],
    ) -> Any:
        """Read one page of rows.

        Args:
            context: Operation context
            entity: Table to read
            where: Fixed equality filters; None reads an empty set
            values: Connection arguments (first, offset, after, orderBy, condition)
        """
        first = _given(values.get("first"))
        offset = _given(values.get("offset")) or 0
        after = _given(values.get("after"))
        if first is not None and first < 0:
            raise ValueError("first must not be negative")
        if offset < 0:
            raise ValueError("offset must not be negative")

        condition = _given(values.get("condition"))
        if condition is not None and where is not None:
            where = dict(where)
            for attr, column in entity.condition_columns:
                value = getattr(condition, attr, strawberry.UNSET)
                if value is strawberry.UNSET:
                    continue
                value = from_graphql(value, column.type, self.config.dynamic_json)
                if column.name in where and where[column.name] != value:
                    where = None
                    break
                where[column.name] = value

        if where is None:
            return self._connection(context, entity, [], 0, False, None)

        order: list[sql.OrderSpec] = []
        for member in _given(values.get("orderBy")) or ():
            order.extend(entity.order_specs.get(member.value, ()))

        start = offset
        if after is not None:
            start = decode_cursor(after) + 1 + offset
        limit = first if first is not None else self.config.default_page_size

        stmt = sql.select_rows(
            entity.table, entity.readable, where, order,
            limit=limit + 1 if limit is not None else None,
            offset=start,
        )
        rows = await context.run(lambda operation: list(operation.execute(stmt).mappings()))
        has_next = limit is not None and len(rows) > limit
        if limit is not None:
            rows = rows[:limit]
        return self._connection(context, entity, rows, start, has_next, where)

    def _connection(
        self,
        context: GatewayContext,
        entity: Entity,
        rows: list[Any],
        start: int,
        has_next: bool,
        where: Optional[dict[str, Any]],
    ) -> Any:
        nodes = [self.make_row(entity, row) for row in rows]
        edges = [
            entity.edge_spec.cls(cursor=encode_cursor(start + i), node=node)
            for i, node in enumerate(nodes)
        ]
        page_info = PageInfo(
            has_next_page=has_next,
            has_previous_page=start > 0,
            start_cursor=edges[0].cursor if edges else None,
            end_cursor=edges[-1].cursor if edges else None,
        )
        connection = entity.connection_spec.cls(nodes=nodes, edges=edges, page_info=page_info)

        async def total_count() -> int:
            if where is None:
                return 0
            stmt = sql.count_rows(entity.table, where)
            return await context.run(lambda operation: operation.execute(stmt).scalar_one())

        connection._total_count = total_count
        return connection

    def _connection_arguments(self, entity: Entity) -> list[Arg]:
        arguments = [
            Arg("first", int, description="Only read the first `n` values of the set."),
            Arg("offset", int, description="Skip the first `n` values from our `after` cursor."),
            Arg("after", Cursor, description="Read all values in the set after (below) this cursor."),
            Arg("orderBy", list[entity.order_enum], description=f"The method to use when ordering `{entity.object_spec.name}`."),
        ]
        if entity.condition_spec is not None:
            arguments.append(Arg(
                "condition", entity.condition_spec.cls,
                description="A condition to be used in determining which values should be returned by the collection.",
            ))
        return arguments

    def _add_connection_fields(self, entity: Entity) -> None:
        async def total_count_impl(root: Any, info: strawberry.Info, values: dict[str, Any]) -> int:
            return await root._total_count()

        name = entity.object_spec.name
        edge = entity.edge_spec
        edge.add("cursor", Optional[Cursor], attr="cursor", description="A cursor for use in pagination.")
        edge.add("node", Optional[entity.object_type], attr="node", description=f"The `{name}` at the end of the edge.")

        connection = entity.connection_spec
        connection.add("nodes", list[Optional[entity.object_type]], attr="nodes",
                       description=f"A list of `{name}` objects.")
        connection.add("edges", list[edge.cls], attr="edges",
                       description=f"A list of edges which contains the `{name}` and cursor to aid in pagination.")
        connection.add("pageInfo", PageInfo, attr="page_info", description="Information to aid in pagination.")
        connection.add(
            "totalCount",
            resolver=make_resolver(total_count_impl, [], int),
            attr="total_count",
            description=f"The count of *all* `{name}` you could get from the connection.",
        )

    # ============== Relations ==============

    def _add_relations(self, entity: Entity) -> None:
        info = entity.info
        for fk in info.foreign_keys:
            target = self.entities.get((fk.target_schema, fk.target)) or self._entity_named(fk.target)
            if target is None or not all(c in entity.readable for c in fk.columns):
                continue
            if fk.tags.omits("read"):
                continue
            self._add_forward_relation(entity, fk, target)

        for source_info, fk in self.catalog.referencing(info):
            source = self.entities.get(source_info.key)
            if source is None or fk.tags.omits("read") or source_info.tags.omits("many"):
                continue
            if not all(c in entity.readable for c in fk.target_columns):
                continue
            if self.config.use_index_hints and not source_info.is_indexed(fk.columns):
                logger.debug(f"No index on {source_info.full_name}{fk.columns}; back relation skipped")
                continue
            unambiguous = sum(1 for other in source_info.foreign_keys if other.target == info.name) == 1
            self._add_backward_relation(entity, source, fk, unambiguous)

    def _entity_named(self, name: str) -> Optional[Entity]:
        for entity in self.entities.values():
            if entity.info.name == name:
                return entity
        return None

    def _add_forward_relation(self, entity: Entity, fk: ForeignKeyInfo, target: Entity) -> None:
        async def impl(root: Any, info: strawberry.Info, values: dict[str, Any]) -> Any:
            where = {tc: root._row.get(c) for c, tc in zip(fk.columns, fk.target_columns)}
            if any(v is None for v in where.values()):
                return None
            return await self._fetch_one(info.context, target, where)

        # Nullable even for NOT NULL keys: the target row may not be visible
        entity.object_spec.add(
            self.inflector.single_relation(entity.info, fk, target.info),
            resolver=make_resolver(impl, [], Optional[target.object_type]),
            fallback=self.base_inflector.single_relation(entity.info, fk, target.info),
            description=f"Reads a single `{target.object_spec.name}` that is related to this `{entity.object_spec.name}`.",
        )

    def _add_backward_relation(self, entity: Entity, source: Entity, fk: ForeignKeyInfo, unambiguous: bool) -> None:
        def where_for(root: Any) -> Optional[dict[str, Any]]:
            where = {c: root._row.get(tc) for c, tc in zip(fk.columns, fk.target_columns)}
            return None if any(v is None for v in where.values()) else where

        async def single_impl(root: Any, info: strawberry.Info, values: dict[str, Any]) -> Any:
            where = where_for(root)
            return await self._fetch_one(info.context, source, where) if where is not None else None

        async def many_impl(root: Any, info: strawberry.Info, values: dict[str, Any]) -> Any:
            # A NULL key never matches, so where_for() gives None for an empty set
            return await self._fetch_connection(info.context, source, where_for(root), values)

        target_info = entity.info
        single_name = self.inflector.single_backward_relation(source.info, fk, target_info, unambiguous)
        is_unique = source.info.is_unique(fk.columns)
        mode = self.config.legacy_relations

        if is_unique and mode in ("omit", "deprecated"):
            entity.object_spec.add(
                single_name,
                resolver=make_resolver(single_impl, [], Optional[source.object_type]),
                fallback=self.base_inflector.single_backward_relation(source.info, fk, target_info, unambiguous),
                description=f"Reads a single `{source.object_spec.name}` that is related to this `{entity.object_spec.name}`.",
            )
            if mode == "omit":
                return

        entity.object_spec.add(
            self.inflector.many_relation(source.info, fk, target_info, unambiguous),
            resolver=make_resolver(many_impl, self._connection_arguments(source), source.connection_spec.cls),
            fallback=self.base_inflector.many_relation(source.info, fk, target_info, unambiguous),
            description=f"Reads and enables pagination through a set of `{source.object_spec.name}`.",
            deprecation_reason=f"Please use {single_name} instead" if is_unique and mode == "deprecated" else None,
        )

    # ============== Root fields ==============

    def _add_table_queries(self, query: TypeSpec, entity: Entity) -> None:
        info = entity.info

        if not info.tags.omits("all"):
            async def all_impl(root: Any, gql_info: strawberry.Info, values: dict[str, Any]) -> Any:
                return await self._fetch_connection(gql_info.context, entity, {}, values)

            query.add(
                self.inflector.all_rows(info),
                resolver=make_resolver(all_impl, self._connection_arguments(entity), Optional[entity.connection_spec.cls]),
                fallback=self.base_inflector.all_rows(info),
                description=f"Reads and enables pagination through a set of `{entity.object_spec.name}`.",
            )

        for key in info.unique_keys():
            if not all(c in entity.readable for c in key):
                continue
            arguments = self._key_arguments(entity, key)

            async def one_impl(root: Any, gql_info: strawberry.Info, values: dict[str, Any], key=key) -> Any:
                return await self._fetch_one(gql_info.context, entity, self._key_values(entity, key, values))

            query.add(
                self.inflector.row_by_unique(info, key),
                resolver=make_resolver(one_impl, arguments, Optional[entity.object_type]),
                fallback=self.base_inflector.row_by_unique(info, key),
            )

    def _key_arguments(self, entity: Entity, key: tuple[str, ...]) -> list[Arg]:
        arguments = []
        for column_name in key:
            column = entity.info.column(column_name)
            arguments.append(Arg(self.inflector.column(column), self._column_type(column, nullable=False), required=True))
        return arguments

    def _key_values(self, entity: Entity, key: tuple[str, ...], values: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for column_name in key:
            column = entity.info.column(column_name)
            value = values[self.inflector.column(column)]
            result[column_name] = from_graphql(value, column.type, self.config.dynamic_json)
        return result

    def _input_values(self, obj: Any, columns: list[tuple[str, ColumnInfo]]) -> dict[str, Any]:
        values = {}
        for attr, column in columns:
            value = getattr(obj, attr, strawberry.UNSET)
            if value is not strawberry.UNSET:
                values[column.name] = from_graphql(value, column.type, self.config.dynamic_json)
        return values

    def _add_table_mutations(self, mutation: TypeSpec, entity: Entity) -> None:
        info = entity.info
        name = entity.object_spec.name

        if entity.input_spec is not None:
            async def create_impl(root: Any, gql_info: strawberry.Info, values: dict[str, Any]) -> Any:
                context: GatewayContext = gql_info.context
                row_values = self._input_values(values["input"], entity.input_columns)
                stmt = sql.insert_row(entity.table, row_values, entity.readable)
                rows = await context.run(_rows_of(stmt, savepoint=True))
                return self.make_row(entity, rows[0])

            mutation.add(
                self.inflector.create_mutation(info),
                resolver=make_resolver(
                    create_impl, [Arg("input", entity.input_spec.cls, required=True)], Optional[entity.object_type],
                ),
                fallback=self.base_inflector.create_mutation(info),
                description=f"Creates a single `{name}`.",
            )

        for key in info.unique_keys():
            if not all(c in entity.readable for c in key):
                continue
            key_arguments = self._key_arguments(entity, key)

            if entity.patch_spec is not None:
                async def update_impl(root: Any, gql_info: strawberry.Info, values: dict[str, Any], key=key) -> Any:
                    context: GatewayContext = gql_info.context
                    where = self._key_values(entity, key, values)
                    patch = self._input_values(values["patch"], entity.patch_columns)
                    if not patch:
                        return await self._fetch_one(context, entity, where)
                    stmt = sql.update_row(entity.table, where, patch, entity.readable)
                    rows = await context.run(_rows_of(stmt, savepoint=True))
                    return self.make_row(entity, rows[0]) if rows else None

                mutation.add(
                    self.inflector.update_mutation(info, key),
                    resolver=make_resolver(
                        update_impl,
                        key_arguments + [Arg("patch", entity.patch_spec.cls, required=True)],
                        Optional[entity.object_type],
                    ),
                    fallback=self.base_inflector.update_mutation(info, key),
                    description=f"Updates a single `{name}` using a unique key and a patch.",
                )

            if "delete" in info.privileges and not info.tags.omits("delete"):
                async def delete_impl(root: Any, gql_info: strawberry.Info, values: dict[str, Any], key=key) -> Any:
                    context: GatewayContext = gql_info.context
                    where = self._key_values(entity, key, values)
                    stmt = sql.delete_row(entity.table, where, entity.readable)
                    rows = await context.run(_rows_of(stmt, savepoint=True))
                    return self.make_row(entity, rows[0]) if rows else None

                mutation.add(
                    self.inflector.delete_mutation(info, key),
                    resolver=make_resolver(delete_impl, key_arguments, Optional[entity.object_type]),
                    fallback=self.base_inflector.delete_mutation(info, key),
                    description=f"Deletes a single `{name}` using a unique key.",
                )

    # ============== Functions ==============

    def _add_function(self, root_spec: TypeSpec, function: FunctionInfo) -> None:
        if not function.executable or function.tags.omits("execute"):
            return

        table_names = {t.name for t in self.catalog.tables}
        if any(a.type.db_type.split(".")[-1].strip('"') in table_names for a in function.arguments):
            logger.debug(f"Skipping function {function.name}: takes a row argument")
            return

        target: Optional[Entity] = None
        if function.return_table is not None:
            target = self.entities.get(function.return_table) or self._entity_named(function.return_table[1])
            if target is None:
                logger.debug(f"Skipping function {function.name}: returns a hidden table")
                return
            item_type = target.object_type
        else:
            item_type = python_type(function.return_type, self.enums, self.config.dynamic_json)

        if function.returns_set:
            item = Optional[item_type] if self.config.setof_functions_contain_nulls else item_type
            return_type: Any = list[item]
        else:
            return_type = Optional[item_type]

        arguments = []
        names = []
        for argument in function.arguments:
            name = self.inflector.argument(argument.name)
            names.append((name, argument))
            arguments.append(Arg(
                name,
                python_type(argument.type, self.enums, self.config.dynamic_json),
                required=not argument.has_default,
            ))

        def convert(row: Any) -> Any:
            if target is not None:
                data = dict(row)
                if all(v is None for v in data.values()):
                    return None
                return self.make_row(target, data)
            return to_graphql(row["value"], function.return_type, self.enums, self.config.dynamic_json)

        async def impl(root: Any, info: strawberry.Info, values: dict[str, Any]) -> Any:
            context: GatewayContext = info.context
            call_args = {
                argument.name: from_graphql(values[name], argument.type, self.config.dynamic_json)
                for name, argument in names
                if values[name] is not strawberry.UNSET
            }
            stmt = sql.call_function(function, call_args)
            rows = await context.run(_rows_of(stmt, savepoint=function.is_mutation))

            if function.returns_set:
                return [convert(row) for row in rows]
            return convert(rows[0]) if rows else None

        root_spec.add(
            self.inflector.function(function),
            resolver=make_resolver(impl, arguments, return_type),
            fallback=self.base_inflector.function(function),
            description=function.tags.description,
        )


def print_schema(schema: strawberry.Schema) -> str:
    """SDL of ``schema``."""
    return str(schema)


def export_schema(schema: strawberry.Schema, path: Path) -> Path:
    """Write the SDL of ``schema`` to ``path``, replacing any previous export."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(print_schema(schema) + "\n")
    logger.info(f"Schema exported to {path}")
    return path
