"""Alembic environment for the public schema and for agency schemas.

    alembic -x schema=public upgrade head
    alembic -x schema=tenant -x tenant_schema=tenant_abc123 upgrade head

Revisions declare which side they belong to and skip themselves on the
other.  Each agency schema keeps its own alembic_version table.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool, text

import carebase.models  # noqa: F401
from carebase.config import settings
from carebase.database import PublicBase, TenantBase
from carebase.tenancy import validate_schema_name

config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url_sync)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

x_args = context.get_x_argument(as_dictionary=True)
target = x_args.get("schema", "public")
tenant_schema = x_args.get("tenant_schema")
if tenant_schema:
    validate_schema_name(tenant_schema)

target_metadata = TenantBase.metadata if target == "tenant" else PublicBase.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        version_table_schema=tenant_schema,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        if tenant_schema:
            connection.execute(text(f'SET search_path TO "{tenant_schema}", pg_catalog'))
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=tenant_schema,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
