"""Sequential step gating.

A learner's position in a course is not stored anywhere: it is read off the
progress table on every pass. A missing progress row means the step is locked.
"""
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.db.models import (
    Enrollment, Step, StepProgress,
    STEP_INFO, STATUS_LOCKED, STATUS_OPEN, STATUS_COMPLETED,
)
from stepwise.services.errors import IntegrityViolation

logger = logging.getLogger("gating_service")


def enrollment_lock_query(user_id: int, course_id: int):
    return (
        select(Enrollment)
        .filter_by(user_id=user_id, course_id=course_id)
        .with_for_update()
    )


def course_enrollments_lock_query(course_id: int):
    return (
        select(Enrollment)
        .filter(Enrollment.course_id == course_id)
        .order_by(Enrollment.id)
        .with_for_update()
    )


async def lock_enrollment(session: AsyncSession, user_id: int, course_id: int) -> Enrollment:
    """Fetch the enrollment row FOR UPDATE so work on one (user, course) is serialized."""
    result = await session.execute(enrollment_lock_query(user_id, course_id))
    enrollment = result.scalars().first()
    if not enrollment:
        raise IntegrityViolation(f"User {user_id} is not enrolled in course {course_id}")
    return enrollment


async def lock_course_enrollments(session: AsyncSession, course_id: int) -> List[Enrollment]:
    """Lock every enrollment of a course, in id order, before editing its steps."""
    result = await session.execute(course_enrollments_lock_query(course_id))
    return list(result.scalars().all())


async def get_course_steps(session: AsyncSession, course_id: int) -> List[Step]:
    result = await session.execute(
        select(Step).filter(Step.course_id == course_id).order_by(Step.position)
    )
    return list(result.scalars().all())


async def get_progress_map(session: AsyncSession, user_id: int, step_ids) -> dict:
    step_ids = list(step_ids)
    if not step_ids:
        return {}
    result = await session.execute(
        select(StepProgress).filter(
            StepProgress.user_id == user_id,
            StepProgress.step_id.in_(step_ids),
        )
    )
    return {record.step_id: record for record in result.scalars().all()}


async def reconcile(session: AsyncSession, user_id: int, course_id: int) -> List[StepProgress]:
    """Complete reachable info steps and open the first unfinished task.

    Walks the whole course in position order. Info steps are completed and
    skipped over; the first task that is not completed becomes the frontier
    (opened if it was locked or absent) and the walk stops there.

    Changes are flushed but not committed. Returns the records that were
    created or changed; an empty list means the state was already consistent.
    """
    await lock_enrollment(session, user_id, course_id)

    steps = await get_course_steps(session, course_id)
    progress = await get_progress_map(session, user_id, (step.id for step in steps))
    changed = []

    for step in steps:
        record = progress.get(step.id)

        if step.step_type == STEP_INFO:
            if record is None:
                record = StepProgress(user_id=user_id, step_id=step.id, status=STATUS_COMPLETED)
                session.add(record)
                changed.append(record)
            elif record.status == STATUS_LOCKED:
                record.status = STATUS_COMPLETED
                changed.append(record)
            continue

        if record is None:
            record = StepProgress(user_id=user_id, step_id=step.id, status=STATUS_OPEN)
            session.add(record)
            changed.append(record)
            break
        if record.status == STATUS_LOCKED:
            record.status = STATUS_OPEN
            changed.append(record)
            break
        if record.status == STATUS_COMPLETED:
            continue
        # open / pending / rejected: current frontier
        break

    if changed:
        await session.flush()
        logger.info(
            f"Reconciled user {user_id} course {course_id}: "
            + ", ".join(f"step {r.step_id} -> {r.status}" for r in changed)
        )
    return changed


def effective_status(record) -> str:
    return record.status if record is not None else STATUS_LOCKED


async def reconcile_course(session: AsyncSession, course_id: int) -> List[StepProgress]:
    """Reconcile every learner enrolled in the course, e.g. after its steps were edited.

    Flushes but does not commit, like ``reconcile``.
    """
    changed = []
    for enrollment in await lock_course_enrollments(session, course_id):
        changed += await reconcile(session, enrollment.user_id, course_id)
    return changed
