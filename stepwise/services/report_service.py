import logging
from typing import List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.db.models import (
    Course, Step, Enrollment, StepProgress,
    STATUS_LOCKED, STATUS_PENDING, STATUS_COMPLETED,
)
from stepwise.services.course_service import get_course, get_step
from stepwise.services.errors import UnauthorizedTransition
from stepwise.services.submission_service import get_submission

logger = logging.getLogger("report_service")


def _count_with_status(user_col, course_col, status):
    return (
        select(func.count(StepProgress.id))
        .join(Step, StepProgress.step_id == Step.id)
        .where(Step.course_id == course_col, StepProgress.user_id == user_col, StepProgress.status == status)
        .scalar_subquery()
    )


def _total_steps(course_col):
    return select(func.count(Step.id)).where(Step.course_id == course_col).scalar_subquery()


async def step_statuses(session: AsyncSession, user_id: int, course_id: int) -> List[dict]:
    """Every step of the course with the user's progress; no progress row reads as locked."""
    result = await session.execute(
        select(Step, StepProgress)
        .outerjoin(StepProgress, and_(StepProgress.step_id == Step.id, StepProgress.user_id == user_id))
        .filter(Step.course_id == course_id)
        .order_by(Step.position)
    )
    rows = []
    for step, progress in result.all():
        rows.append({
            "step": step,
            "status": progress.status if progress is not None else STATUS_LOCKED,
            "progress_id": progress.id if progress is not None else None,
            "file_url": progress.file_url if progress is not None else None,
            "text_answer": progress.text_answer if progress is not None else None,
            "admin_comment": progress.admin_comment if progress is not None else None,
            "submitted_at": progress.submitted_at if progress is not None else None,
            "reviewed_at": progress.reviewed_at if progress is not None else None,
        })
    return rows


# --- Learner views ---

async def dashboard(session: AsyncSession, user_id: int) -> List[dict]:
    result = await session.execute(
        select(
            Course,
            Enrollment.enrolled_at,
            _total_steps(Course.id).label("total_steps"),
            _count_with_status(user_id, Course.id, STATUS_COMPLETED).label("completed_steps"),
        )
        .join(Enrollment, Enrollment.course_id == Course.id)
        .filter(Enrollment.user_id == user_id)
        .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
    )
    return [
        {"course": course, "enrolled_at": enrolled_at, "total_steps": total or 0, "completed_steps": completed or 0}
        for course, enrolled_at, total, completed in result.all()
    ]


async def _require_enrollment(session: AsyncSession, user_id: int, course_id: int):
    result = await session.execute(select(Enrollment.id).filter_by(user_id=user_id, course_id=course_id))
    if result.scalar() is None:
        logger.warning(f"User {user_id} has no access to course {course_id}")
        raise UnauthorizedTransition("You do not have access to this course")


async def learner_course(session: AsyncSession, user_id: int, course_id: int):
    course = await get_course(session, course_id)
    await _require_enrollment(session, user_id, course_id)
    return course, await step_statuses(session, user_id, course_id)


async def learner_step(session: AsyncSession, user_id: int, step_id: int):
    step = await get_step(session, step_id)
    await _require_enrollment(session, user_id, step.course_id)
    result = await session.execute(select(StepProgress).filter_by(user_id=user_id, step_id=step_id))
    progress = result.scalars().first()
    if not progress or progress.status == STATUS_LOCKED:
        raise UnauthorizedTransition("This step is not available yet")
    return step, progress


# --- Admin views ---

async def admin_stats(session: AsyncSession) -> dict:
    learners = await session.execute(select(func.count(func.distinct(Enrollment.user_id))))
    courses = await session.execute(select(func.count(Course.id)))
    pending = await session.execute(
        select(func.count(StepProgress.id)).filter(StepProgress.status == STATUS_PENDING)
    )
    return {
        "users": learners.scalar() or 0,
        "courses": courses.scalar() or 0,
        "pending": pending.scalar() or 0,
    }


async def pending_submissions(session: AsyncSession, limit: Optional[int] = None, newest_first: bool = False):
    query = (
        select(StepProgress, Step, Course)
        .join(Step, StepProgress.step_id == Step.id)
        .join(Course, Step.course_id == Course.id)
        .filter(StepProgress.status == STATUS_PENDING)
    )
    if newest_first:
        query = query.order_by(StepProgress.submitted_at.desc(), StepProgress.id.desc())
    else:
        query = query.order_by(StepProgress.submitted_at.asc(), StepProgress.id.asc())
    if limit:
        query = query.limit(limit)
    result = await session.execute(query)
    return [{"progress": p, "step": s, "course": c} for p, s, c in result.all()]


async def submission_detail(session: AsyncSession, progress_id: int):
    progress = await get_submission(session, progress_id)
    step = await get_step(session, progress.step_id)
    course = await get_course(session, step.course_id)
    return {"progress": progress, "step": step, "course": course}


async def course_progress(session: AsyncSession, course_id: int) -> List[dict]:
    await get_course(session, course_id)
    result = await session.execute(
        select(
            Enrollment.user_id,
            _total_steps(course_id).label("total_steps"),
            _count_with_status(Enrollment.user_id, course_id, STATUS_COMPLETED).label("completed_steps"),
            _count_with_status(Enrollment.user_id, course_id, STATUS_PENDING).label("pending_steps"),
        )
        .filter(Enrollment.course_id == course_id)
        .order_by(Enrollment.user_id)
    )
    return [
        {"user_id": user_id, "total_steps": total or 0, "completed_steps": completed or 0, "pending_steps": pending or 0}
        for user_id, total, completed, pending in result.all()
    ]


async def user_course_progress(session: AsyncSession, user_id: int, course_id: int):
    course = await get_course(session, course_id)
    return course, await step_statuses(session, user_id, course_id)
