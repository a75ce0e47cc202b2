"""Account registration and login phases.

Registration picks a free username for each record, creates the account and
logs in straight away so the character phase does not need a second login.
Records sharing a base username are processed one after another so they
never race for the same numeric suffix.
"""

import asyncio

from edu_migration.client.exceptions import (
    EduMigrationError,
    NameConflictError,
    NameExhaustedError,
    describe_error,
)
from edu_migration.migration.models import MigrationPhase, UserRecord
from edu_migration.migration.runtime import PhaseContext
from edu_migration.utils.grouping import group_by_username, run_groups
from edu_migration.utils.logging import get_logger, log_phase_progress
from edu_migration.utils.retry import retry_with_backoff

logger = get_logger(__name__)


def with_suffix(base: str, suffix: int) -> str:
    """``base`` for suffix 0, otherwise ``base`` followed by the number."""
    return base if suffix == 0 else f"{base}{suffix}"


def next_free_suffix(base: str, taken: set[str], start: int, max_suffix: int) -> int:
    """Lowest suffix >= ``start`` whose name is not in ``taken`` (lowercased).

    Raises:
        NameExhaustedError: If every suffix up to ``max_suffix`` is taken
    """
    suffix = start
    while with_suffix(base, suffix).lower() in taken:
        suffix += 1
        if suffix > max_suffix:
            raise NameExhaustedError(base, max_suffix)
    if suffix > max_suffix:
        raise NameExhaustedError(base, max_suffix)
    return suffix


async def _existing_usernames(ctx: PhaseContext, base: str) -> set[str]:
    admin = await ctx.admin()
    try:
        return await retry_with_backoff(
            lambda: admin.existing_usernames(base),
            ctx.generic_policy(),
            context=f"lookup usernames '{base}'",
            sleep=ctx.sleep,
        )
    except EduMigrationError as e:
        # Server-side uniqueness still applies; a conflict just costs a round trip
        logger.warning("username_lookup_failed", base=base, error=str(e))
        return set()


async def register_account(ctx: PhaseContext, record: UserRecord) -> UserRecord:
    """Register ``record`` under the first free variant of its username.

    Returns:
        The record with ``actual_username`` assigned and ``registered`` set

    Raises:
        NameExhaustedError: No free suffix up to the configured cap
        EduMigrationError: Any other registration failure
    """
    base = record.username.strip()
    max_suffix = ctx.config.performance.max_name_suffix
    taken = await _existing_usernames(ctx, base)
    suffix = next_free_suffix(base, taken, 0, max_suffix)

    while True:
        candidate = with_suffix(base, suffix)
        try:
            await retry_with_backoff(
                lambda: ctx.register_dispatcher.dispatch(
                    lambda: ctx.anonymous.register(candidate, record.password)
                ),
                ctx.unavailable_policy,
                context=f"register '{candidate}'",
                sleep=ctx.sleep,
            )
        except NameConflictError:
            logger.debug("username_taken", candidate=candidate)
            taken.add(candidate.lower())
            suffix = next_free_suffix(base, taken, suffix + 1, max_suffix)
            continue

        logger.info("user_registered", username=candidate, base=base)
        return record.assign_username(candidate).advance(registered=True)


async def login_account(ctx: PhaseContext, record: UserRecord) -> UserRecord:
    """Log ``record`` in and keep its user id, token and backend display name."""
    username = record.label
    result = await retry_with_backoff(
        lambda: ctx.login_dispatcher.dispatch(
            lambda: ctx.anonymous.login(username, record.password)
        ),
        ctx.unavailable_policy,
        context=f"login '{username}'",
        sleep=ctx.sleep,
    )
    logger.debug("user_logged_in", username=username, user_id=result.user_id)
    updated = record.model_copy(
        update={
            "user_id": result.user_id or record.user_id,
            "access_token": result.access_token,
            "login_display_name": result.display_name or record.login_display_name,
        }
    )
    return updated.advance(logged_in=True)


async def _register_one(ctx: PhaseContext, key: str) -> bool:
    if not await ctx.controller.checkpoint():
        return False

    run = ctx.run
    record = run.get(key)
    try:
        record = run.update((await register_account(ctx, record)).cleared())
    except Exception as e:
        reason = describe_error(e)
        logger.warning("registration_failed", username=record.username, error=reason)
        run.update(record.with_failure(MigrationPhase.REGISTRATION, reason))
        run.processed_registrations += 1
        ctx.notify()
        return True

    try:
        record = await login_account(ctx, record)
        run.update(record)
        run.processed_logins += 1
    except Exception as e:
        # Stays registered; the login phase tries again
        reason = f"Login failed after registration: {describe_error(e)}"
        logger.warning("post_registration_login_failed", username=record.label, error=reason)
        run.update(record.with_failure(MigrationPhase.LOGIN, reason))

    run.processed_registrations += 1
    log_phase_progress(
        logger,
        phase=MigrationPhase.REGISTRATION.value,
        completed=run.processed_registrations,
        total=len(run.users),
        username=record.label,
    )
    ctx.notify()
    return True


async def run_registration(ctx: PhaseContext, records: list[UserRecord]) -> None:
    """Register every record in ``records``, grouped by base username."""
    ctx.run.phase = MigrationPhase.REGISTRATION
    ctx.notify()
    if not records:
        return

    groups = group_by_username(records)
    logger.info("phase_started", phase="registration", users=len(records), groups=len(groups))
    await run_groups(
        {name: [r.key for r in members] for name, members in groups.items()},
        lambda key: _register_one(ctx, key),
        max_concurrent=ctx.config.performance.max_concurrent_groups,
        label="registration",
    )
    logger.info(
        "phase_completed",
        phase="registration",
        processed=ctx.run.processed_registrations,
        failed=sum(1 for r in ctx.run.failed_users if r.failed_phase is MigrationPhase.REGISTRATION),
    )


async def _login_one(ctx: PhaseContext, key: str) -> bool:
    if not await ctx.controller.checkpoint():
        return False

    run = ctx.run
    record = run.get(key)
    try:
        run.update((await login_account(ctx, record)).cleared())
    except Exception as e:
        reason = describe_error(e)
        logger.warning("login_failed", username=record.label, error=reason)
        run.update(record.with_failure(MigrationPhase.LOGIN, reason))

    run.processed_logins += 1
    ctx.notify()
    return True


async def run_login(ctx: PhaseContext, records: list[UserRecord]) -> None:
    """Log in registered records that hold no access token yet.

    Login does not compete for names, so records are not grouped; the number
    in flight is bounded and every send still passes the login throttle.
    """
    ctx.run.phase = MigrationPhase.LOGIN
    ctx.notify()
    if not records:
        return

    logger.info("phase_started", phase="login", users=len(records))
    semaphore = asyncio.Semaphore(ctx.config.performance.login_concurrency)
    stopped = False

    async def login_with_limit(key: str) -> None:
        nonlocal stopped
        async with semaphore:
            if stopped:
                return
            if not await _login_one(ctx, key):
                stopped = True

    await asyncio.gather(*(login_with_limit(r.key) for r in records))
    logger.info("phase_completed", phase="login", processed=ctx.run.processed_logins)
