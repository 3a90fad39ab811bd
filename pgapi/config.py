# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Gateway configuration: environment reading and the immutable options record."""

import importlib
import os
import re
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pgapi.errors import ConfigError

DEFAULT_PORT = 4000
DEFAULT_PLUGINS = ("pgapi.plugins.simplify:SimplifyInflectorPlugin",)


def default_allow_explain(request: Any) -> bool:
    """Expose explain data to every request.

    Placeholder policy. Supply ``allow_explain`` to restrict it.
    """
    return True


def default_pg_settings(request: Any) -> Optional[Mapping[str, Any]]:
    """Per-request database settings hook; no settings by default."""
    return None


def import_object(path: str) -> Any:
    """Import ``module:attribute`` (or ``module.attribute``)."""
    if ":" in path:
        module_path, attr = path.split(":", 1)
    elif "." in path:
        module_path, attr = path.rsplit(".", 1)
    else:
        raise ConfigError(f"Not an import path: {path!r}")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ConfigError(f"Cannot import {module_path!r}: {e}") from e

    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ConfigError(f"{module_path!r} has no attribute {attr!r}") from e


class GatewayConfig(BaseModel):
    """Options for the generated GraphQL API.

    Built once at startup and never mutated. Both connection strings come
    from the same ``DATABASE_URL`` when built from the environment; the
    owner connection is only used to read metadata.

    Example YAML (``pgapi.yaml``):
        schemas: [public, app]
        watch_schema: false
        error_verbosity: none
        allow_explain: myproject.policies:explain_for_admins
        pg_settings: myproject.policies:jwt_claims
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    connection_string: Optional[str] = Field(
        default=None,
        description="Database URL used to serve GraphQL requests",
    )
    owner_connection_string: Optional[str] = Field(
        default=None,
        description="Privileged database URL used for schema introspection",
    )
    schemas: tuple[str, ...] = Field(
        default=("public",),
        description="Database schemas exposed through GraphQL",
    )

    subscriptions: bool = Field(default=True, description="Enable websocket subscriptions")
    watch_schema: bool = Field(
        default=True,
        description="Rebuild the GraphQL schema when the database schema changes",
    )
    watch_interval_seconds: float = Field(default=2.0, gt=0)
    dynamic_json: bool = Field(
        default=True,
        description="Expose json/jsonb columns as structured JSON instead of strings",
    )
    setof_functions_contain_nulls: bool = Field(
        default=False,
        description="Whether rows returned by set-returning functions may be null",
    )
    enforce_rbac: bool = Field(
        default=True,
        description="Hide tables, columns and mutations the serving role cannot use",
    )
    use_index_hints: bool = Field(
        default=True,
        description="Only expose filters, orderings and back-relations backed by an index",
    )
    error_verbosity: Literal["none", "string", "json"] = Field(
        default="json",
        description="How exception stacks are attached to GraphQL errors",
    )
    extended_error_fields: frozenset[str] = Field(
        default=frozenset({"hint", "detail", "errcode"}),
        description="Database diagnostic fields copied onto GraphQL errors",
    )
    plugins: tuple[Any, ...] = Field(
        default=DEFAULT_PLUGINS,
        description="Plugin import paths, classes or instances, applied in order",
    )
    schema_export_path: Optional[Path] = Field(
        default=Path("schema.graphql"),
        description="Where the SDL of the derived schema is written",
    )
    explorer: bool = Field(default=True, description="Serve GraphiQL")
    explorer_enhanced: bool = Field(
        default=True,
        description="Requests from GraphiQL receive explain data when allowed",
    )
    allow_explain: Callable[[Any], bool] = Field(default=default_allow_explain)
    batching: bool = Field(default=True, description="Accept arrays of operations per request")
    max_batch_operations: int = Field(default=20, gt=0)
    legacy_relations: Literal["omit", "deprecated", "only"] = Field(
        default="omit",
        description="How unique backward relations are exposed",
    )
    pg_settings: Callable[[Any], Optional[Mapping[str, Any]]] = Field(default=default_pg_settings)
    default_page_size: Optional[int] = Field(default=None, gt=0)

    host: str = Field(default="0.0.0.0", description="Host address to bind the server to")
    graphql_path: str = "/graphql"
    explorer_path: str = "/graphiql"
    cors_origins: tuple[str, ...] = ("*",)

    @model_validator(mode="before")
    @classmethod
    def default_owner_connection(cls, data: Any) -> Any:
        """Use the serving connection for introspection unless told otherwise."""
        if isinstance(data, dict) and not data.get("owner_connection_string"):
            data = {**data, "owner_connection_string": data.get("connection_string")}
        return data

    @field_validator("allow_explain", "pg_settings", mode="before")
    @classmethod
    def import_hook(cls, value: Any) -> Any:
        if isinstance(value, str):
            return import_object(value)
        return value

    @field_validator("error_verbosity", mode="before")
    @classmethod
    def coerce_verbosity(cls, value: Any) -> Any:
        # showErrorStack-style booleans
        if value is True:
            return "string"
        if value is False or value is None:
            return "none"
        return value

    @field_validator("extended_error_fields", mode="before")
    @classmethod
    def split_error_fields(cls, value: Any) -> Any:
        if isinstance(value, str):
            return frozenset(part.strip() for part in value.split(",") if part.strip())
        return value

    @classmethod
    def from_yaml(cls, path: str | Path, env: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """Load options from YAML with ``${VAR}`` substitution.

        Connection strings the file leaves unset are taken from
        ``DATABASE_URL`` in ``env`` (defaults to ``os.environ``).
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        env = os.environ if env is None else env
        raw_content = path.read_text()
        data = yaml.safe_load(_substitute_env_vars(raw_content, env)) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")

        database_url = env.get("DATABASE_URL") or None
        data.setdefault("connection_string", database_url)
        data.setdefault("owner_connection_string", data.get("connection_string"))

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e


def build_configuration(env: Mapping[str, str]) -> GatewayConfig:
    """Build the options record from environment values.

    Pure: reads nothing but ``env``. ``DATABASE_URL`` is not validated; a
    missing value only fails once the server tries to connect.
    """
    database_url = env.get("DATABASE_URL") or None
    return GatewayConfig(
        connection_string=database_url,
        owner_connection_string=database_url,
    )


def resolve_port(env: Mapping[str, str]) -> int:
    """Port to listen on: ``PORT`` or 4000."""
    raw = env.get("PORT")
    if raw is None or not raw.strip():
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError as e:
        raise ConfigError(f"PORT must be an integer, got {raw!r}") from e
    if not 0 <= port <= 65535:
        raise ConfigError(f"PORT out of range: {port}")
    return port


def read_environment(start_dir: Optional[Path] = None) -> dict[str, str]:
    """Load the nearest ``.env`` into the process environment and return a copy of it."""
    search_dir = (start_dir or Path.cwd()).resolve()
    while search_dir != search_dir.parent:
        env_file = search_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            break
        search_dir = search_dir.parent
    return dict(os.environ)


def to_sqlalchemy_url(url: str) -> str:
    """Normalize libpq-style ``postgres://`` URLs for SQLAlchemy."""
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def _substitute_env_vars(content: str, env: Mapping[str, str]) -> str:
    """Replace ${VAR_NAME} with environment variable values."""
    pattern = re.compile(r'\$\{([^}]+)\}')

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = env.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable not set: {var_name}")
        return value

    return pattern.sub(replacer, content)


def load_configuration(env: Mapping[str, str], path: Optional[str | Path] = None) -> GatewayConfig:
    """Options from a YAML file (``path`` or ``PGAPI_CONFIG``), else from the environment alone."""
    path = path or env.get("PGAPI_CONFIG") or None
    if path:
        return GatewayConfig.from_yaml(path, env)
    return build_configuration(env)
