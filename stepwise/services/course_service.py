import logging
from typing import List, Optional

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.db.models import (
    Course, Step, Enrollment, StepProgress,
    STEP_KINDS, STEP_INFO, STEP_TASK, ANSWER_TYPES, ANSWER_FILE,
    STATUS_OPEN, STATUS_PENDING, STATUS_COMPLETED, STATUS_REJECTED,
)
from stepwise.services import gating_service
from stepwise.services.errors import AnswerValidationError, IntegrityViolation, NotFound
from stepwise.services.storage_service import ArtifactStore, Upload, check_upload

logger = logging.getLogger("course_service")

FRONTIER_STATUSES = (STATUS_OPEN, STATUS_PENDING, STATUS_REJECTED)


def build_answer_type(step_type: str, answer_types) -> str:
    """Serialize the answer requirement of a step; task steps default to file."""
    if step_type not in STEP_KINDS:
        raise AnswerValidationError("kind", f"Unknown step kind '{step_type}'")
    if step_type != STEP_TASK:
        return ""
    types = [t for t in ANSWER_TYPES if t in set(answer_types or ())]
    unknown = set(answer_types or ()) - set(ANSWER_TYPES)
    if unknown:
        raise AnswerValidationError("answer_requirement", f"Unknown answer types: {sorted(unknown)}")
    return ",".join(types) if types else ANSWER_FILE


# --- Courses ---

async def get_course(session: AsyncSession, course_id: int) -> Course:
    result = await session.execute(select(Course).filter(Course.id == course_id))
    course = result.scalars().first()
    if not course:
        raise NotFound("Course not found")
    return course


async def list_courses(session: AsyncSession) -> List[dict]:
    steps_count = (
        select(func.count(Step.id)).where(Step.course_id == Course.id).correlate(Course).scalar_subquery()
    )
    enrolled_count = (
        select(func.count(Enrollment.id)).where(Enrollment.course_id == Course.id).correlate(Course).scalar_subquery()
    )
    result = await session.execute(
        select(Course, steps_count.label("steps_count"), enrolled_count.label("enrolled_count"))
        .order_by(Course.created_at.desc(), Course.id.desc())
    )
    return [
        {"course": course, "steps_count": steps or 0, "enrolled_count": enrolled or 0}
        for course, steps, enrolled in result.all()
    ]


async def create_course(session: AsyncSession, title: str, description: Optional[str] = None,
                        image_url: Optional[str] = None) -> Course:
    course = Course(title=title, description=description, image_url=image_url or None)
    session.add(course)
    await session.commit()
    await session.refresh(course)
    logger.info(f"Course {course.id} '{title}' created")
    return course


async def update_course(session: AsyncSession, course_id: int, title: str,
                        description: Optional[str] = None, image_url: Optional[str] = None) -> Course:
    course = await get_course(session, course_id)
    course.title = title
    course.description = description
    course.image_url = image_url or None
    await session.commit()
    return course


async def _artifacts_of_steps(session: AsyncSession, step_ids) -> List[str]:
    step_ids = list(step_ids)
    if not step_ids:
        return []
    result = await session.execute(
        select(StepProgress.file_url).filter(
            StepProgress.step_id.in_(step_ids), StepProgress.file_url.isnot(None)
        )
    )
    return list(result.scalars().all())


async def delete_course(session: AsyncSession, storage: ArtifactStore, course_id: int):
    await get_course(session, course_id)
    result = await session.execute(select(Step).filter(Step.course_id == course_id))
    steps = list(result.scalars().all())
    artifacts = [s.video_url for s in steps if s.video_url]
    artifacts += await _artifacts_of_steps(session, (s.id for s in steps))

    step_ids = [s.id for s in steps]
    if step_ids:
        await session.execute(delete(StepProgress).where(StepProgress.step_id.in_(step_ids)))
    await session.execute(delete(Enrollment).where(Enrollment.course_id == course_id))
    await session.execute(delete(Step).where(Step.course_id == course_id))
    await session.execute(delete(Course).where(Course.id == course_id))
    await session.commit()
    logger.info(f"Course {course_id} deleted with {len(step_ids)} steps")

    await storage.delete_many(artifacts)


# --- Steps ---

async def get_step(session: AsyncSession, step_id: int) -> Step:
    result = await session.execute(select(Step).filter(Step.id == step_id))
    step = result.scalars().first()
    if not step:
        raise NotFound("Step not found")
    return step


async def list_steps(session: AsyncSession, course_id: int) -> List[Step]:
    await get_course(session, course_id)
    result = await session.execute(select(Step).filter(Step.course_id == course_id).order_by(Step.position))
    return list(result.scalars().all())


async def add_step(
    session: AsyncSession,
    storage: ArtifactStore,
    course_id: int,
    title: str,
    content: Optional[str] = None,
    step_type: str = STEP_TASK,
    answer_types=None,
    video: Optional[Upload] = None,
) -> Step:
    await get_course(session, course_id)
    answer_type = build_answer_type(step_type, answer_types)

    video_url = None
    if video is not None:
        check_upload(video)
        video_url = await storage.store(video.data, video.content_type, video.filename)

    try:
        await gating_service.lock_course_enrollments(session, course_id)
        result = await session.execute(select(func.max(Step.position)).filter(Step.course_id == course_id))
        position = (result.scalar() or 0) + 1

        step = Step(
            course_id=course_id,
            title=title,
            content=content,
            video_url=video_url,
            position=position,
            step_type=step_type,
            answer_type=answer_type,
        )
        session.add(step)
        await session.flush()
        # learners who had finished the course reach the new step
        await gating_service.reconcile_course(session, course_id)
        await session.commit()
    except Exception:
        # загруженное видео без записи в базе никому не нужно
        await session.rollback()
        await storage.delete(video_url)
        raise
    await session.refresh(step)
    logger.info(f"Step {step.id} ({step_type}) added to course {course_id} at position {position}")
    return step


async def update_step(
    session: AsyncSession,
    storage: ArtifactStore,
    step_id: int,
    title: str,
    content: Optional[str] = None,
    step_type: str = STEP_TASK,
    answer_types=None,
    remove_video: bool = False,
    video: Optional[Upload] = None,
) -> Step:
    step = await get_step(session, step_id)
    answer_type = build_answer_type(step_type, answer_types)

    old_video_url = step.video_url
    video_url = old_video_url
    new_video_url = None
    if video is not None:
        check_upload(video)
        new_video_url = video_url = await storage.store(video.data, video.content_type, video.filename)
    elif remove_video:
        video_url = None

    try:
        await gating_service.lock_course_enrollments(session, step.course_id)
        if step.step_type == STEP_TASK and step_type == STEP_INFO:
            # an info step has no answer to wait for
            result = await session.execute(
                select(StepProgress).filter(
                    StepProgress.step_id == step_id,
                    StepProgress.status.in_(FRONTIER_STATUSES),
                )
            )
            for record in result.scalars().all():
                record.status = STATUS_COMPLETED
                logger.info(f"Step {step_id} became info, user {record.user_id} record completed")

        step.title = title
        step.content = content
        step.video_url = video_url
        step.step_type = step_type
        step.answer_type = answer_type
        await session.flush()
        await gating_service.reconcile_course(session, step.course_id)
        await session.commit()
    except Exception:
        await session.rollback()
        await storage.delete(new_video_url)
        raise

    if old_video_url and old_video_url != video_url:
        await storage.delete(old_video_url)
    return step


async def delete_step(session: AsyncSession, storage: ArtifactStore, step_id: int):
    step = await get_step(session, step_id)
    course_id, position = step.course_id, step.position
    artifacts = [step.video_url] if step.video_url else []
    artifacts += await _artifacts_of_steps(session, [step_id])

    await gating_service.lock_course_enrollments(session, course_id)
    await session.execute(delete(StepProgress).where(StepProgress.step_id == step_id))
    await session.execute(delete(Step).where(Step.id == step_id))
    await session.flush()

    # сдвигаем следующие шаги, чтобы позиции шли подряд
    result = await session.execute(
        select(Step).filter(Step.course_id == course_id, Step.position > position).order_by(Step.position)
    )
    for later in result.scalars().all():
        later.position -= 1
    await session.flush()
    # если удалён текущий шаг, следующий становится доступен
    await gating_service.reconcile_course(session, course_id)
    await session.commit()
    logger.info(f"Step {step_id} deleted from course {course_id}")

    await storage.delete_many(artifacts)


def _progress_rank(status: str) -> int:
    if status == STATUS_COMPLETED:
        return 0
    if status in FRONTIER_STATUSES:
        return 1
    return 2


async def move_step(session: AsyncSession, step_id: int, direction: str) -> Step:
    """Swap a step with its neighbour.

    Refused with ``IntegrityViolation`` when, for some enrolled learner, the
    swap would put a task they have not reached ahead of one they have.
    Learners are reconciled afterwards, so info steps moved in front of the
    frontier get completed.
    """
    if direction not in ("up", "down"):
        raise AnswerValidationError("direction", f"Unknown direction '{direction}'")
    step = await get_step(session, step_id)
    target = step.position - 1 if direction == "up" else step.position + 1
    if target < 1:
        return step

    result = await session.execute(select(Step).filter_by(course_id=step.course_id, position=target))
    other = result.scalars().first()
    if not other:
        return step

    first, second = (step, other) if direction == "up" else (other, step)
    enrollments = await gating_service.lock_course_enrollments(session, step.course_id)
    if first.step_type == STEP_TASK and second.step_type == STEP_TASK:
        for enrollment in enrollments:
            progress = await gating_service.get_progress_map(session, enrollment.user_id, [first.id, second.id])
            first_status = gating_service.effective_status(progress.get(first.id))
            second_status = gating_service.effective_status(progress.get(second.id))
            if _progress_rank(first_status) > _progress_rank(second_status):
                logger.warning(
                    f"Move of step {step_id} {direction} refused: user {enrollment.user_id} "
                    f"has step {first.id} {first_status} and step {second.id} {second_status}"
                )
                raise IntegrityViolation(
                    f"Moving this step would put an unreached step ahead of user {enrollment.user_id}'s progress"
                )

    other.position, step.position = step.position, target
    await session.flush()
    await gating_service.reconcile_course(session, step.course_id)
    await session.commit()
    logger.info(f"Step {step_id} moved {direction} to position {target}")
    return step
