"""Class and group assignment phase.

Students are added to an existing class's group as is; teachers are only
attached to classes created in this run. New classes get their own teacher
plus the school's admin teacher. A class whose group was created but whose
class object was not is finished on that group when retried.
"""

from dataclasses import dataclass, field

from edu_migration.client.exceptions import EduMigrationError, describe_error
from edu_migration.client.platform_client import LearningPlatformClient
from edu_migration.migration.models import ClassRecord, MigrationPhase, UserRecord
from edu_migration.migration.runtime import MigrationRun, PhaseContext
from edu_migration.utils.logging import get_logger
from edu_migration.utils.retry import retry_with_backoff

logger = get_logger(__name__)

ADMIN_TEACHER_SUFFIX = "gv"


def admin_teacher_username(school_prefix: str) -> str:
    return f"{school_prefix.lower()}{ADMIN_TEACHER_SUFFIX}"


@dataclass
class ClassPlan:
    """What the class phase needs to know about the remote system.

    ``roster_students`` and ``roster_teachers`` are records of an earlier run
    that are not part of the current one; only their user ids are used.
    """

    existing_groups: dict[str, str]
    existing_admin_teacher_id: str | None = None
    roster_students: list[UserRecord] = field(default_factory=list)
    roster_teachers: list[UserRecord] = field(default_factory=list)

    def outside(self, records: list[UserRecord], run: MigrationRun) -> list[UserRecord]:
        return [r for r in records if r.user_id and r.key not in run.users]


def in_class(record: UserRecord, class_name: str) -> bool:
    return record.class_name.lower() == class_name.lower()


async def fetch_existing_groups(ctx: PhaseContext, school_prefix: str) -> dict[str, str]:
    """Lowercased class name to group id for the school's existing classes."""
    admin = await ctx.admin()
    groups = await retry_with_backoff(
        lambda: admin.search_groups(school_prefix.upper()),
        ctx.generic_policy(),
        context=f"lookup groups '{school_prefix}'",
        sleep=ctx.sleep,
    )
    logger.info("existing_classes_found", school_prefix=school_prefix, count=len(groups))
    return groups


async def find_admin_teacher_id(ctx: PhaseContext, school_prefix: str) -> str | None:
    """User id of an admin teacher that already exists remotely, if any."""
    username = admin_teacher_username(school_prefix)
    admin = await ctx.admin()
    try:
        user = await retry_with_backoff(
            lambda: admin.find_user(username),
            ctx.generic_policy(),
            context=f"lookup admin teacher '{username}'",
            sleep=ctx.sleep,
        )
    except EduMigrationError as e:
        logger.warning("admin_teacher_lookup_failed", username=username, error=str(e))
        return None
    if user is None or not user.user_id:
        logger.info("admin_teacher_not_found", username=username)
        return None
    logger.info("admin_teacher_found", username=user.username, user_id=user.user_id)
    return user.user_id


def class_teacher_ids(
    class_name: str,
    teachers: list[UserRecord],
    school_prefix: str,
    existing_admin_teacher_id: str | None,
) -> list[str]:
    """Teacher ids for a new class: its own teacher plus the admin teacher."""
    ids: list[str] = []
    for teacher in teachers:
        if not teacher.user_id:
            continue
        if teacher.is_admin_teacher(school_prefix) or in_class(teacher, class_name):
            ids.append(teacher.user_id)
    if existing_admin_teacher_id:
        ids.append(existing_admin_teacher_id)
    return list(dict.fromkeys(ids))


def waiting_students(run: MigrationRun, plan: ClassPlan) -> list[UserRecord]:
    """Students with an account that are not in their class yet."""
    return [
        s
        for s in run.students + plan.outside(plan.roster_students, run)
        if s.user_id and not s.state.added_to_class
    ]


async def _create_class(
    ctx: PhaseContext,
    admin: LearningPlatformClient,
    class_record: ClassRecord,
    plan: ClassPlan,
) -> ClassRecord:
    """Create the class object for a record whose group already exists."""
    run = ctx.run
    name = class_record.name
    group_id = class_record.group_id
    teachers = class_teacher_ids(
        name,
        run.teachers + plan.outside(plan.roster_teachers, run),
        run.school_prefix,
        plan.existing_admin_teacher_id,
    )
    school_year = ctx.config.school_year
    await retry_with_backoff(
        lambda: admin.create_class(
            name,
            group_id,
            teachers,
            class_record.grade,
            school_year.class_start_date,
            school_year.class_end_date,
        ),
        ctx.generic_policy(),
        context=f"create class '{name}'",
        sleep=ctx.sleep,
    )
    logger.info(
        "class_created",
        class_name=name,
        group_id=group_id,
        students=len(class_record.student_ids),
        teachers=len(teachers),
    )
    attached = set(teachers)
    for teacher in run.teachers:
        if teacher.user_id in attached and not teacher.state.added_to_class:
            run.update(teacher.advance(added_to_class=True))
    return class_record.model_copy(
        update={"class_created": True, "teacher_ids": tuple(teachers), "failure_reason": None}
    )


async def _assign_class(
    ctx: PhaseContext,
    admin: LearningPlatformClient,
    class_record: ClassRecord,
    plan: ClassPlan,
) -> ClassRecord | None:
    run = ctx.run
    name = class_record.name
    members = [s for s in run.students if s.user_id and in_class(s, name)]
    others = [s for s in plan.outside(plan.roster_students, run) if in_class(s, name)]
    student_ids = list(
        dict.fromkeys(s.user_id for s in members + others if s.user_id and not s.state.added_to_class)
    )
    if not student_ids:
        logger.info("class_skipped_no_students", class_name=name)
        return None

    group_id = plan.existing_groups.get(name.lower()) or class_record.group_id
    if class_record.group_id and not (class_record.existing or class_record.class_created):
        # Group left behind by an earlier attempt; finish the class on it
        group_id = class_record.group_id
        missing = [i for i in student_ids if i not in class_record.student_ids]
        if missing:
            await retry_with_backoff(
                lambda: admin.add_users_to_group(group_id, missing),
                ctx.generic_policy(),
                context=f"add students to '{name}'",
                sleep=ctx.sleep,
            )
        logger.info("class_creation_resumed", class_name=name, group_id=group_id)
        pending = run.update_class(
            class_record.model_copy(
                update={"student_ids": tuple(dict.fromkeys(class_record.student_ids + tuple(missing)))}
            )
        )
        updated = await _create_class(ctx, admin, pending, plan)
    elif group_id:
        await retry_with_backoff(
            lambda: admin.add_users_to_group(group_id, student_ids),
            ctx.generic_policy(),
            context=f"add students to '{name}'",
            sleep=ctx.sleep,
        )
        logger.info("class_students_added", class_name=name, group_id=group_id, students=len(student_ids))
        updated = class_record.model_copy(
            update={
                "group_id": group_id,
                "existing": True,
                "class_created": True,
                "student_ids": tuple(student_ids),
                "failure_reason": None,
            }
        )
    else:
        group_id = await retry_with_backoff(
            lambda: admin.create_group(name, student_ids),
            ctx.generic_policy(),
            context=f"create group '{name}'",
            sleep=ctx.sleep,
        )
        pending = run.update_class(
            class_record.model_copy(
                update={"group_id": group_id, "existing": False, "student_ids": tuple(student_ids)}
            )
        )
        updated = await _create_class(ctx, admin, pending, plan)

    for student in members:
        run.update(run.get(student.key).advance(added_to_class=True))
    return updated


def _fail_members(run: MigrationRun, class_name: str, reason: str) -> None:
    for student in run.students:
        if (
            student.user_id
            and not student.failure_reason
            and not student.state.added_to_class
            and in_class(student, class_name)
        ):
            run.update(student.with_failure(MigrationPhase.CLASSES, reason))


async def run_class_assignment(
    ctx: PhaseContext, classes: list[ClassRecord], plan: ClassPlan
) -> None:
    """Create or fill each class in order; a failing class does not stop the rest.

    Students of a failed class are marked failed at the class phase so a
    retry picks them up.
    """
    run = ctx.run
    run.phase = MigrationPhase.CLASSES
    ctx.notify()
    if not classes:
        return

    admin = await ctx.admin()
    logger.info("phase_started", phase="classes", classes=len(classes))
    for index, class_record in enumerate(classes, start=1):
        if not await ctx.controller.checkpoint():
            return
        try:
            updated = await _assign_class(ctx, admin, class_record, plan)
            if updated is not None:
                run.update_class(updated)
        except Exception as e:
            reason = describe_error(e)
            logger.warning(
                "class_assignment_failed",
                class_name=class_record.name,
                position=f"{index}/{len(classes)}",
                error=reason,
            )
            # Keep a group created before the failure
            latest = run.classes.get(class_record.name.lower(), class_record)
            run.update_class(latest.model_copy(update={"failure_reason": reason}))
            _fail_members(run, class_record.name, f"Class assignment failed: {reason}")
        run.processed_classes += 1
        ctx.notify()

    logger.info(
        "phase_completed",
        phase="classes",
        processed=run.processed_classes,
        failed=len(run.failed_classes),
    )
