"""
Main CLI entry point for edu-bridge.

This module provides the command-line interface for migrating school
accounts into the learning platform.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from edu_migration import __version__
from edu_migration.cli.commands import config as config_commands
from edu_migration.cli.commands import migrate as migrate_commands
from edu_migration.cli.context import MigrationContext
from edu_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

DEFAULT_LOG_FILE = Path("logs") / "migration.log"


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="edu-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="EDU_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="EDU_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file (default: logs/migration.log)",
    envvar="EDU_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """edu-bridge - Migrate school accounts into the learning platform.

    Registers students and teachers from a records file, sets up their
    characters, fills classes and grants the teacher role.

    Examples:

        # Validate configuration
        edu-bridge --config config.yaml config validate

        # Run a migration
        edu-bridge --config config.yaml migrate --input school.json --failed-out failed.json

        # Retry the users that failed
        edu-bridge --config config.yaml retry --input failed.json --classes school.json
    """
    configure_logging(level=log_level, log_file=str(log_file or DEFAULT_LOG_FILE))

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug("cli_started", config=str(config) if config else None, command=ctx.invoked_subcommand)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(config_commands.config)
cli.add_command(migrate_commands.migrate)
cli.add_command(migrate_commands.retry)
cli.add_command(migrate_commands.assign_roles)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Without standalone mode click returns the exit code of ctx.exit/Exit
        rv = cli(standalone_mode=False)
        return rv if isinstance(rv, int) else 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("Unexpected error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
