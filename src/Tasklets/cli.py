"""Command line entry point for the Tasklets beads importer.

Examples:
  tasklets init-db
  tasklets seed --product-name Tasklets --product-code TSKLTS --user-email ramesh@systech.com
  tasklets import-beads .beads/issues.jsonl
  tasklets --database-url postgresql://u:p@db/tasklets import-beads --json

Exit codes for import-beads: 0 completed (even with skipped records),
1 seed product/user missing, 2 input unreadable, 130 cancelled.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import click
import orjson
import structlog

from Tasklets import repos
from Tasklets.config import Settings, load_settings
from Tasklets.db import configure_engine, create_schema, dispose_engine, session_scope
from Tasklets.importer import run_import
from Tasklets.importer_context import CancelToken, InputSourceError, SeedMissingError
from Tasklets.ingest import open_issue_source
from Tasklets.logging import redact_settings, setup_logging
from Tasklets.reconciliation import ImportReport, render_summary

log = structlog.get_logger()

EXIT_OK = 0
EXIT_SEED_MISSING = 1
EXIT_INPUT_UNREADABLE = 2
EXIT_CANCELLED = 130


def _install_cancel_handlers(token: CancelToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows loops and non-main threads: Ctrl-C falls back to KeyboardInterrupt
            pass


async def _run_import(
    settings: Settings,
    source: Path,
    *,
    product_name: str,
    user_email: str,
    issue_keys: bool,
    token: CancelToken,
) -> ImportReport:
    with open_issue_source(source) as lines:
        await configure_engine(settings.database_url)
        try:
            _install_cancel_handlers(token)
            return await run_import(
                lines,
                product_name=product_name,
                user_email=user_email,
                epic_color=settings.import_epic_color,
                issue_keys=issue_keys,
                cancel_token=token,
            )
        finally:
            await dispose_engine()


async def _init_db(settings: Settings) -> None:
    await configure_engine(settings.database_url)
    try:
        await create_schema()
    finally:
        await dispose_engine()


async def _seed(
    settings: Settings,
    *,
    tenant_slug: str,
    tenant_name: str,
    product_name: str,
    product_code: str,
    user_email: str,
    user_name: str,
) -> dict[str, int]:
    await configure_engine(settings.database_url)
    try:
        async with session_scope() as s:
            tenant = await repos.get_or_create_tenant(s, tenant_slug, tenant_name)
            product = await repos.get_or_create_product(s, tenant.id, product_name, product_code)
            user = await repos.get_or_create_user(s, tenant.id, user_email, user_name)
            return {"tenant_id": tenant.id, "product_id": product.id, "user_id": user.id}
    finally:
        await dispose_engine()


@click.group()
@click.option("--database-url", default=None, help="Override DATABASE_URL / config.toml.")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None) -> None:
    """Tasklets maintenance commands."""
    overrides = {"database_url": database_url} if database_url else {}
    settings = load_settings(**overrides)
    setup_logging(settings)
    log.debug("cli.settings", **redact_settings(settings))
    ctx.obj = settings


@cli.command("init-db")
@click.pass_obj
def init_db(settings: Settings) -> None:
    """Create all tables (development databases; use Alembic elsewhere)."""
    asyncio.run(_init_db(settings))
    click.echo("Schema created.")


@cli.command()
@click.option("--tenant-slug", default="systech", show_default=True)
@click.option("--tenant-name", default="Systech-erp.ai", show_default=True)
@click.option("--product-name", default=None, help="Defaults to import_product_name.")
@click.option("--product-code", default="TSKLTS", show_default=True)
@click.option("--user-email", default=None, help="Defaults to import_user_email.")
@click.option("--user-name", default="Ramesh", show_default=True)
@click.pass_obj
def seed(
    settings: Settings,
    tenant_slug: str,
    tenant_name: str,
    product_name: str | None,
    product_code: str,
    user_email: str | None,
    user_name: str,
) -> None:
    """Create the tenant/product/user the importer attaches records to."""
    ids = asyncio.run(
        _seed(
            settings,
            tenant_slug=tenant_slug,
            tenant_name=tenant_name,
            product_name=product_name or settings.import_product_name,
            product_code=product_code,
            user_email=user_email or settings.import_user_email,
            user_name=user_name,
        )
    )
    click.echo(
        f"Seed ready: tenant {ids['tenant_id']}, product {ids['product_id']}, user {ids['user_id']}"
    )


@cli.command("import-beads")
@click.argument("source", required=False, type=click.Path(path_type=Path))
@click.option("--product", "product_name", default=None, help="Seed product name.")
@click.option("--user-email", default=None, help="Seed user email.")
@click.option("--no-issue-keys", is_flag=True, help="Do not assign product issue keys.")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.pass_context
def import_beads(
    ctx: click.Context,
    source: Path | None,
    product_name: str | None,
    user_email: str | None,
    no_issue_keys: bool,
    as_json: bool,
) -> None:
    """Import a beads issues.jsonl export (default: import_source_path)."""
    settings: Settings = ctx.obj
    token = CancelToken()
    try:
        report = asyncio.run(
            _run_import(
                settings,
                source or Path(settings.import_source_path),
                product_name=product_name or settings.import_product_name,
                user_email=user_email or settings.import_user_email,
                issue_keys=settings.import_issue_keys and not no_issue_keys,
                token=token,
            )
        )
    except SeedMissingError as exc:
        click.echo(f"Import failed: {exc}", err=True)
        ctx.exit(EXIT_SEED_MISSING)
    except InputSourceError as exc:
        click.echo(f"Import failed: {exc}", err=True)
        ctx.exit(EXIT_INPUT_UNREADABLE)

    if as_json:
        click.echo(orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2).decode())
    else:
        click.echo(render_summary(report))
    ctx.exit(EXIT_CANCELLED if report.cancelled else EXIT_OK)


if __name__ == "__main__":
    cli()
