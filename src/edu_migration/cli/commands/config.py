"""
Configuration management commands.

This module provides commands for validating and displaying the
migration configuration.
"""

import asyncio
from pathlib import Path

import click
import yaml

from edu_migration.cli.context import MigrationContext
from edu_migration.cli.decorators import handle_errors, pass_context, requires_config
from edu_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from edu_migration.config import MigrationConfig, masked_config_dict
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate and display migration configuration.
    """
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Log in as the admin account to test the backend connection",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate migration configuration.

    This command validates the configuration, checking:
    - Required fields are present
    - The backend URL is properly formatted
    - The results directory is usable
    - Throttling and retry settings are sensible

    Examples:

        # Basic validation
        edu-bridge --config config.yaml config validate

        # Validate and test the admin login
        edu-bridge --config config.yaml config validate --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path or 'environment'}")
    config = ctx.config

    click.echo()
    _display_config_summary(config)

    click.echo()
    echo_info("Validating paths...")
    _validate_paths(config)

    echo_info("Validating settings...")
    _validate_settings(config)

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        _test_connectivity(ctx)

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: MigrationConfig) -> None:
    """Display configuration summary."""
    performance = config.performance
    rows = [
        ["Backend URL", config.backend.url],
        ["Admin", config.backend.admin_username or "(token)"],
        ["Register Rate (req/s)", performance.register_rate],
        ["Login Rate (req/s)", performance.login_rate],
        ["Max Concurrent Groups", performance.max_concurrent_groups],
        ["503 Retry Ceiling", performance.max_503_retries],
        ["Retry Delay (ms)", performance.retry_delay_ms],
        ["School Year", config.school_year.year],
        ["Results Directory", config.paths.results_dir],
    ]

    print_table(
        "Configuration Summary",
        ["Setting", "Value"],
        rows,
    )


def _validate_paths(config: MigrationConfig) -> None:
    """Validate file paths in configuration."""
    results_dir = Path(config.paths.results_dir)

    if not results_dir.exists():
        try:
            results_dir.mkdir(parents=True, exist_ok=True)
            echo_success(f"Created results directory: {results_dir}")
        except OSError as e:
            echo_error(f"Cannot create results directory: {results_dir}")
            raise click.ClickException(f"Failed to create results directory: {e}") from e
    else:
        echo_success(f"Results directory exists: {results_dir}")

    if not results_dir.is_dir():
        echo_error(f"Results path is not a directory: {results_dir}")
        raise click.ClickException(f"Invalid results directory: {results_dir}")

    echo_success("All paths are valid")


def _validate_settings(config: MigrationConfig) -> None:
    """Warn about settings likely to trip the backend's spam protection."""
    performance = config.performance
    if performance.register_rate > 5:
        echo_warning(
            f"Registration rate ({performance.register_rate}/s) may trigger spam protection"
        )
    if performance.max_concurrent_groups > 10:
        echo_warning(
            f"High group concurrency ({performance.max_concurrent_groups}) may overload the backend"
        )
    if config.backend.admin_token and config.backend.admin_username:
        echo_info("Admin token configured; credentials are used only to log in again on 401")

    echo_success("All settings are valid")


def _test_connectivity(ctx: MigrationContext) -> None:
    """Log in as the admin account."""

    async def test_connection() -> None:
        async with ctx.create_service() as service:
            await service.admin_client()

    try:
        asyncio.run(test_connection())
    except Exception as e:
        echo_error(f"Failed to reach backend: {e}")
        raise

    echo_success(f"Backend accessible: {ctx.config.backend.url}")


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext) -> None:
    """Display current configuration.

    Shows the loaded configuration with sensitive values masked.

    Examples:

        edu-bridge --config config.yaml config show
    """
    config = ctx.config

    _display_config_summary(config)
    click.echo()
    click.echo(yaml.safe_dump(masked_config_dict(config), sort_keys=False))
