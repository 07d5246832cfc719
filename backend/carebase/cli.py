"""Tenant management commands.

    python -m carebase.cli list-tenants
    python -m carebase.cli migrate-tenants [--schema tenant_xxx]
    python -m carebase.cli provision tenant_xxx [tenant_yyy ...]

Run from backend/ so Alembic finds alembic.ini.
"""

import argparse
import subprocess
import sys

from sqlalchemy import create_engine, select

from carebase.config import settings
from carebase.models.public.agency import Agency
from carebase.tenancy import provision_tenant_schema, validate_schema_name


def active_tenant_schemas() -> list[str]:
    engine = create_engine(settings.database_url_sync)
    with engine.connect() as conn:
        rows = conn.execute(
            select(Agency.tenant_schema)
            .where(Agency.is_active == True)  # noqa: E712
            .order_by(Agency.tenant_schema)
        )
        return [row[0] for row in rows]


def cmd_list(args) -> int:
    schemas = active_tenant_schemas()
    for schema in schemas:
        print(f"  {schema}")
    print(f"\n{len(schemas)} agency schema(s)")
    return 0


def cmd_migrate(args) -> int:
    schemas = [validate_schema_name(args.schema)] if args.schema else active_tenant_schemas()
    if not schemas:
        print("No agency schemas to migrate.")
        return 0

    failures = []
    for schema in schemas:
        print(f"  {schema}: upgrading to head")
        result = subprocess.run(
            [
                sys.executable, "-m", "alembic",
                "-x", "schema=tenant", "-x", f"tenant_schema={schema}",
                "upgrade", "head",
            ],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            failures.append(schema)
            print(f"  {schema}: FAILED\n{result.stderr}")
    print(f"\n{len(schemas) - len(failures)}/{len(schemas)} schema(s) migrated")
    return 1 if failures else 0


def cmd_provision(args) -> int:
    engine = create_engine(settings.database_url_sync)
    for schema in args.schemas:
        with engine.begin() as conn:
            provision_tenant_schema(conn, schema)
        print(f"  {schema}: tables ensured")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="carebase.cli", description="CareBase tenant management")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list-tenants", help="show active agency schemas").set_defaults(func=cmd_list)

    migrate = sub.add_parser("migrate-tenants", help="run Alembic on agency schemas")
    migrate.add_argument("--schema", help="migrate only this schema")
    migrate.set_defaults(func=cmd_migrate)

    provision = sub.add_parser("provision", help="create agency schemas and their tables")
    provision.add_argument("schemas", nargs="+")
    provision.set_defaults(func=cmd_provision)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
