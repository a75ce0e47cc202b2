"""Character initialization phase.

Each logged-in user gets a unique display name and a starter equipment set.
The display name is resolved against the names already in use, then checked
by the backend. When a candidate is too short or too long, or the backend
calls it invalid, resolution falls back through shorter bases: the last word
of the name, the username, and finally the name the backend assigned at
login.
"""

import re

from edu_migration.client.exceptions import (
    APIError,
    EduMigrationError,
    InvalidNameError,
    NameConflictError,
    describe_error,
)
from edu_migration.client.platform_client import LearningPlatformClient
from edu_migration.migration.equipment import random_equipment_set
from edu_migration.migration.models import MigrationPhase, UserRecord
from edu_migration.migration.registration import with_suffix
from edu_migration.migration.runtime import PhaseContext
from edu_migration.utils.grouping import group_by_display_name, run_groups
from edu_migration.utils.logging import get_logger, log_phase_progress
from edu_migration.utils.retry import retry_with_backoff

logger = get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def clean_phone_number(phone_number: str | None) -> str:
    """Strip everything but digits."""
    return _NON_DIGITS.sub("", phone_number or "")


def display_name_bases(record: UserRecord) -> list[str]:
    """Candidate bases in fallback order, without blanks or repeats."""
    name = record.display_name.strip()
    words = name.split()
    candidates = [
        name,
        words[-1] if words else "",
        record.actual_username or "",
        record.login_display_name or "",
    ]
    bases: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in bases:
            bases.append(candidate)
    return bases


class DisplayNameResolver:
    """Finds an accepted display name for one user."""

    def __init__(self, ctx: PhaseContext, client: LearningPlatformClient):
        self.ctx = ctx
        self.client = client
        self.min_length = ctx.config.naming.min_display_name_length
        self.max_length = ctx.config.naming.max_display_name_length
        self.max_suffix = ctx.config.performance.max_name_suffix
        self._taken: dict[str, set[str]] = {}

    def fits(self, name: str) -> bool:
        return self.min_length <= len(name) <= self.max_length

    async def taken_names(self, base: str) -> set[str]:
        """Lowercased display names already in use that start with ``base``."""
        key = base.lower()
        if key not in self._taken:
            admin = await self.ctx.admin()
            try:
                self._taken[key] = await retry_with_backoff(
                    lambda: admin.existing_display_names(base),
                    self.ctx.generic_policy(),
                    context=f"lookup display names '{base}'",
                    sleep=self.ctx.sleep,
                )
            except EduMigrationError as e:
                logger.warning("display_name_lookup_failed", base=base, error=str(e))
                self._taken[key] = set()
        return self._taken[key]

    async def resolve(self, record: UserRecord) -> str:
        """Return the first candidate the backend accepts.

        Falls back to the login display name (or username) when every base
        is exhausted or the backend fails for a reason other than a name
        conflict or an invalid name.
        """
        fallback = record.login_display_name or record.label
        for base in display_name_bases(record):
            taken = await self.taken_names(base)
            suffix = 0
            while suffix <= self.max_suffix:
                candidate = with_suffix(base, suffix)
                if candidate.lower() in taken:
                    suffix += 1
                    continue
                if not self.fits(candidate):
                    logger.debug("display_name_length_rejected", candidate=candidate)
                    break
                try:
                    await retry_with_backoff(
                        lambda: self.client.validate_display_name(candidate),
                        self.ctx.generic_policy(),
                        context=f"validate display name '{candidate}'",
                        sleep=self.ctx.sleep,
                    )
                except NameConflictError:
                    taken.add(candidate.lower())
                    suffix += 1
                    continue
                except InvalidNameError:
                    logger.debug("display_name_invalid", candidate=candidate)
                    break
                except APIError as e:
                    logger.warning(
                        "display_name_validation_failed",
                        candidate=candidate,
                        fallback=fallback,
                        error=describe_error(e),
                    )
                    return fallback
                return candidate
            else:
                logger.warning("display_name_suffixes_exhausted", base=base, max_suffix=self.max_suffix)
        return fallback


async def initialize_character(ctx: PhaseContext, record: UserRecord) -> UserRecord:
    """Resolve the display name and send equipment, age and phone in one call."""
    client = ctx.user_session(record)
    if record.actual_display_name:
        display_name = record.actual_display_name
    else:
        display_name = await DisplayNameResolver(ctx, client).resolve(record)

    items = random_equipment_set()
    phone_number = clean_phone_number(record.phone_number)
    await retry_with_backoff(
        lambda: client.set_equipment(items, display_name, record.age, phone_number or None),
        ctx.generic_policy(),
        context=f"set equipment '{record.label}'",
        sleep=ctx.sleep,
    )
    logger.info("character_initialized", username=record.label, display_name=display_name)

    updated = record.assign_display_name(display_name).advance(
        equipment_set=True, phone_updated=True
    )
    if client.token != record.access_token:
        updated = updated.model_copy(update={"access_token": client.token})
    return updated


async def _initialize_one(ctx: PhaseContext, key: str) -> bool:
    if not await ctx.controller.checkpoint():
        return False

    run = ctx.run
    record = run.get(key)
    try:
        run.update((await initialize_character(ctx, record)).cleared())
    except Exception as e:
        # Registration and login stay valid; the user still joins its class
        reason = describe_error(e)
        logger.warning("character_initialization_failed", username=record.label, error=reason)
        run.update(record.with_failure(MigrationPhase.INITIALIZATION, reason))

    run.processed_inits += 1
    log_phase_progress(
        logger,
        phase=MigrationPhase.INITIALIZATION.value,
        completed=run.processed_inits,
        total=len(run.users),
        username=record.label,
    )
    ctx.notify()
    return True


async def run_initialization(ctx: PhaseContext, records: list[UserRecord]) -> None:
    """Initialize characters, grouped by base display name."""
    ctx.run.phase = MigrationPhase.INITIALIZATION
    ctx.notify()
    if not records:
        return

    groups = group_by_display_name(records)
    logger.info("phase_started", phase="initialization", users=len(records), groups=len(groups))
    await run_groups(
        {name: [r.key for r in members] for name, members in groups.items()},
        lambda key: _initialize_one(ctx, key),
        max_concurrent=ctx.config.performance.max_concurrent_groups,
        label="initialization",
    )
    logger.info("phase_completed", phase="initialization", processed=ctx.run.processed_inits)
