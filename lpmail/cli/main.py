"""CLI entry point for the LP email pipeline."""

import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from lpmail.cli.pipeline import Pipeline
from lpmail.config import PipelineConfig

logger = logging.getLogger(__name__)


@click.group()
@click.option("--org", "org_id", envvar="LPMAIL_ORG_ID", default=None, help="Organization ID.")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite database path (default: $LPMAIL_DB_PATH or data/lpmail.db).",
)
@click.option("--verbose", "-v", is_flag=True, help="Show pipeline logs.")
@click.pass_context
def cli(ctx: click.Context, org_id: str | None, db_path: Path | None, verbose: bool) -> None:
    """LP email pipeline — parse, backfill, reparse and ingest commands."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    config = PipelineConfig.from_env()
    if org_id:
        config.organization_id = org_id
    if db_path is not None:
        config.db_path = db_path
    if config.db_path != Path(":memory:"):
        config.db_path.parent.mkdir(parents=True, exist_ok=True)

    ctx.obj = Pipeline.from_config(config)
    ctx.call_on_close(ctx.obj.close)


# Import and register commands after cli is defined to avoid circular imports.
from lpmail.cli.commands import backfill, ingest, parse, reparse  # noqa: E402

cli.add_command(parse)
cli.add_command(backfill)
cli.add_command(reparse)
cli.add_command(ingest)
