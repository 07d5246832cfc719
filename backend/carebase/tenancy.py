"""Schema-per-agency tenancy.

The tenant middleware puts the agency schema from the JWT into
`_tenant_ctx`; get_tenant_db and the cache key prefix read it back.
Schema names are interpolated into SQL, so every name passes
validate_schema_name first.
"""

import re
from contextvars import ContextVar

from sqlalchemy import text
from sqlalchemy.engine import Connection

from carebase.middleware.exceptions import TenantContextError

_tenant_ctx: ContextVar[str | None] = ContextVar("_tenant_ctx", default=None)

_SCHEMA_RE = re.compile(r"^tenant_[a-z0-9]{6,36}$")


def set_current_tenant_schema(schema: str) -> None:
    _tenant_ctx.set(schema)


def clear_tenant_context() -> None:
    _tenant_ctx.set(None)


def get_current_tenant_schema() -> str:
    schema = _tenant_ctx.get()
    if schema is None:
        raise TenantContextError("Care plan endpoints need an agency-scoped token")
    return schema


def validate_schema_name(schema: str) -> str:
    """Return `schema` if it looks like `tenant_<6-36 lowercase alnum>`, else ValueError."""
    if not _SCHEMA_RE.match(schema):
        raise ValueError(f"Invalid tenant schema name: {schema!r}")
    return schema


def provision_tenant_schema(conn: Connection, schema: str) -> None:
    """Create the agency schema and any TenantBase tables it is missing."""
    from carebase.database import TenantBase
    import carebase.models  # noqa: F401

    validate_schema_name(schema)
    conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
    scoped = conn.execution_options(schema_translate_map={None: schema})
    TenantBase.metadata.create_all(bind=scoped, checkfirst=True)
