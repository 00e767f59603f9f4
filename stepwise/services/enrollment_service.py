import logging
from typing import List

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.db.models import Enrollment, Step, StepProgress
from stepwise.services import gating_service
from stepwise.services.course_service import get_course
from stepwise.services.errors import AlreadyEnrolled, NotFound
from stepwise.services.storage_service import ArtifactStore

logger = logging.getLogger("enrollment_service")


async def get_enrollment(session: AsyncSession, user_id: int, course_id: int) -> Enrollment | None:
    result = await session.execute(select(Enrollment).filter_by(user_id=user_id, course_id=course_id))
    return result.scalars().first()


async def enroll_user(session: AsyncSession, user_id: int, course_id: int) -> Enrollment:
    """Grant a course to a user and open its first steps."""
    await get_course(session, course_id)

    if await get_enrollment(session, user_id, course_id):
        logger.warning(f"User {user_id} already enrolled in course {course_id}")
        raise AlreadyEnrolled("User already enrolled in this course")

    enrollment = Enrollment(user_id=user_id, course_id=course_id)
    session.add(enrollment)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise AlreadyEnrolled("User already enrolled in this course")

    await gating_service.reconcile(session, user_id, course_id)
    await session.commit()
    await session.refresh(enrollment)
    logger.info(f"User {user_id} enrolled in course {course_id}")
    return enrollment


async def unenroll(session: AsyncSession, storage: ArtifactStore, enrollment_id: int):
    """Revoke an enrollment together with the user's progress in that course."""
    result = await session.execute(select(Enrollment).filter(Enrollment.id == enrollment_id))
    enrollment = result.scalars().first()
    if not enrollment:
        raise NotFound("Enrollment not found")
    user_id, course_id = enrollment.user_id, enrollment.course_id

    step_ids = select(Step.id).filter(Step.course_id == course_id)
    result = await session.execute(
        select(StepProgress.file_url).filter(
            StepProgress.user_id == user_id,
            StepProgress.step_id.in_(step_ids),
            StepProgress.file_url.isnot(None),
        )
    )
    artifacts = list(result.scalars().all())

    await session.execute(
        delete(StepProgress).where(StepProgress.user_id == user_id, StepProgress.step_id.in_(step_ids))
    )
    await session.execute(delete(Enrollment).where(Enrollment.id == enrollment_id))
    await session.commit()
    logger.info(f"User {user_id} unenrolled from course {course_id}")

    await storage.delete_many(artifacts)
    return user_id, course_id


async def list_enrollments(session: AsyncSession) -> List[Enrollment]:
    result = await session.execute(select(Enrollment).order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc()))
    return list(result.scalars().all())


async def reconcile_user_course(session: AsyncSession, user_id: int, course_id: int):
    """Re-run gating for one learner, e.g. after a manual data fix."""
    changed = await gating_service.reconcile(session, user_id, course_id)
    await session.commit()
    return changed
