import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.db.models import (
    StepProgress,
    STEP_INFO, ANSWER_TEXT, ANSWER_FILE,
    STATUS_LOCKED, STATUS_OPEN, STATUS_PENDING, STATUS_COMPLETED, STATUS_REJECTED,
)
from stepwise.services import gating_service
from stepwise.services.course_service import get_step
from stepwise.services.errors import (
    AnswerValidationError, NotFound, UnauthorizedTransition, IntegrityViolation,
)
from stepwise.services.storage_service import ArtifactStore, Upload, check_upload

logger = logging.getLogger("submission_service")

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"

SUBMITTABLE_STATUSES = (STATUS_OPEN, STATUS_REJECTED, STATUS_PENDING)


def validate_answer(requirement: frozenset, text_answer: Optional[str], has_file: bool):
    """Structural completeness check of an answer against the step's answer types."""
    has_text = bool(text_answer and text_answer.strip())
    needs_file = ANSWER_FILE in requirement
    needs_text = ANSWER_TEXT in requirement

    if needs_file and not needs_text and not has_file:
        raise AnswerValidationError("no_file", "This step requires a file")
    if needs_text and not needs_file and not has_text:
        raise AnswerValidationError("no_text", "This step requires a text answer")
    if not has_file and not has_text:
        raise AnswerValidationError("empty", "Answer is empty")


async def get_progress(session: AsyncSession, user_id: int, step_id: int) -> Optional[StepProgress]:
    result = await session.execute(select(StepProgress).filter_by(user_id=user_id, step_id=step_id))
    return result.scalars().first()


async def submit_answer(
    session: AsyncSession,
    storage: ArtifactStore,
    user_id: int,
    step_id: int,
    text_answer: Optional[str] = None,
    upload: Optional[Upload] = None,
) -> StepProgress:
    step = await get_step(session, step_id)
    try:
        await gating_service.lock_enrollment(session, user_id, step.course_id)
    except IntegrityViolation:
        logger.warning(f"User {user_id} submitted to step {step_id} without enrollment")
        raise UnauthorizedTransition("You are not enrolled in this course") from None

    progress = await get_progress(session, user_id, step_id)
    if not progress or progress.status == STATUS_LOCKED:
        logger.warning(f"User {user_id} submitted to locked step {step_id}")
        raise UnauthorizedTransition("This step is not available yet")
    if step.step_type == STEP_INFO or progress.status not in SUBMITTABLE_STATUSES:
        logger.warning(f"User {user_id} submitted to step {step_id} in status {progress.status}")
        raise UnauthorizedTransition(f"Step in status '{progress.status}' does not accept answers")

    validate_answer(step.answer_requirement, text_answer, upload is not None)
    if upload is not None:
        check_upload(upload)

    # Новый файл загружаем до изменения записи: при ошибке прогресс не трогаем
    file_url = None
    if upload is not None:
        file_url = await storage.store(upload.data, upload.content_type, upload.filename)

    old_file_url = progress.file_url
    progress.file_url = file_url
    progress.text_answer = text_answer.strip() if text_answer and text_answer.strip() else None
    progress.status = STATUS_PENDING
    progress.admin_comment = None
    progress.submitted_at = datetime.utcnow()
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        if file_url:
            logger.error(f"Commit of submission for step {step_id} failed, discarding {file_url}")
            await storage.delete(file_url)
        raise
    logger.info(f"User {user_id} submitted answer for step {step_id}")

    if old_file_url and old_file_url != file_url:
        await storage.delete(old_file_url)
    return progress


async def get_submission(session: AsyncSession, progress_id: int) -> StepProgress:
    result = await session.execute(select(StepProgress).filter(StepProgress.id == progress_id))
    progress = result.scalars().first()
    if not progress:
        raise NotFound("Submission not found")
    return progress


async def review_submission(
    session: AsyncSession,
    progress_id: int,
    decision: str,
    comment: Optional[str] = None,
) -> StepProgress:
    if decision not in (DECISION_APPROVE, DECISION_REJECT):
        raise AnswerValidationError("decision", f"Unknown decision '{decision}'")

    progress = await get_submission(session, progress_id)
    step = await get_step(session, progress.step_id)
    await gating_service.lock_enrollment(session, progress.user_id, step.course_id)
    # перечитываем под блокировкой
    await session.refresh(progress)

    if progress.status != STATUS_PENDING:
        logger.warning(f"Review of submission {progress_id} in status {progress.status} refused")
        raise UnauthorizedTransition(f"Only pending submissions can be reviewed, this one is '{progress.status}'")

    if decision == DECISION_REJECT:
        if not comment or not comment.strip():
            raise AnswerValidationError("comment", "A comment is required to reject a submission")
        progress.status = STATUS_REJECTED
        progress.admin_comment = comment.strip()
        progress.reviewed_at = datetime.utcnow()
        await session.commit()
        logger.info(f"Submission {progress_id} (user {progress.user_id}, step {step.id}) rejected")
        return progress

    progress.status = STATUS_COMPLETED
    progress.admin_comment = None
    progress.reviewed_at = datetime.utcnow()
    await session.flush()
    await gating_service.reconcile(session, progress.user_id, step.course_id)
    await session.commit()
    logger.info(f"Submission {progress_id} (user {progress.user_id}, step {step.id}) approved")
    return progress


async def force_open(session: AsyncSession, user_id: int, step_id: int) -> StepProgress:
    """Administrative override: open a step regardless of the frontier.

    Does not reconcile, so it can leave more than one open task step.
    """
    step = await get_step(session, step_id)
    await gating_service.lock_enrollment(session, user_id, step.course_id)

    progress = await get_progress(session, user_id, step_id)
    if progress is None:
        progress = StepProgress(user_id=user_id, step_id=step_id, status=STATUS_OPEN)
        session.add(progress)
    else:
        progress.status = STATUS_OPEN
    await session.commit()
    logger.info(f"Step {step_id} force-opened for user {user_id}")
    return progress
