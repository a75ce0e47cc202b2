"""
Decorators shared by the edu-bridge commands.

Commands receive the MigrationContext instead of the click context, and
library errors are turned into a message on stderr plus an exit code:

    1  the migration could not run, or anything unexpected
    2  invalid or missing configuration
    3  the platform refused the admin credentials
    4  the platform answered with an error
"""

import functools
from collections.abc import Callable

import click

from edu_migration.cli.context import MigrationContext
from edu_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    MigrationError,
)
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_AUTH = 3
EXIT_API = 4


def pass_context(f: Callable) -> Callable:
    """Call ``f`` with the MigrationContext stored on the click context."""

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        return f(click_ctx.obj, *args, **kwargs)

    return wrapper


def _fail(code: int, headline: str, error: Exception, hint: str | None = None) -> click.exceptions.Exit:
    logger.error(headline, error=str(error), exit_code=code)
    click.echo(f"{headline}: {error}", err=True)
    if hint:
        click.echo(f"\n{hint}", err=True)
    return click.exceptions.Exit(code)


def handle_errors(f: Callable) -> Callable:
    """Report library errors and exit with the matching code."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (click.exceptions.Exit, click.ClickException):
            # Let intentional exits and usage errors reach click unchanged
            raise
        except ConfigurationError as e:
            raise _fail(
                EXIT_CONFIG, "Configuration Error", e, "Check the configuration file for missing fields."
            ) from e
        except AuthenticationError as e:
            raise _fail(
                EXIT_AUTH, "Authentication Error", e, "Verify the admin credentials in the configuration."
            ) from e
        except APIError as e:
            hint = f"Response status: {e.status_code}" if e.status_code else None
            raise _fail(EXIT_API, "API Error", e, hint) from e
        except MigrationError as e:
            code = EXIT_AUTH if isinstance(e.__cause__, AuthenticationError) else EXIT_FAILURE
            raise _fail(code, "Migration Error", e) from e
        except Exception as e:
            logger.exception("unexpected_error")
            raise _fail(EXIT_FAILURE, "Unexpected Error", e, "See the log file for the traceback.") from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Load the configuration before ``f`` runs; exit 2 when it is invalid.

    The configuration comes from --config, or from EDU_BRIDGE_* environment
    variables when no file is given.
    """

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        try:
            ctx.config
        except ConfigurationError as e:
            if ctx.config_path is None:
                hint = "Use --config or set EDU_BRIDGE_CONFIG / EDU_BRIDGE_BACKEND__URL."
            else:
                hint = None
            raise _fail(EXIT_CONFIG, "Error loading configuration", e, hint) from e
        return f(ctx, *args, **kwargs)

    return wrapper
