import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.db.database import get_async_session
from stepwise.models.course import CourseOut, StepOut
from stepwise.models.progress import (
    CourseStepsOut, DashboardItem, ProgressOut, StepDetailOut, StepStatusOut,
)
from stepwise.security import Identity, get_identity
from stepwise.services import report_service, submission_service
from stepwise.services.activity_service import log_activity
from stepwise.services.course_service import get_course
from stepwise.services.storage_service import ArtifactStore, Upload, get_artifact_store

router = APIRouter(tags=["Student"])

logger = logging.getLogger("routes_student")


async def read_upload(file: Optional[UploadFile]) -> Optional[Upload]:
    # пустое поле файла в форме приходит как UploadFile без имени
    if file is None or not file.filename:
        return None
    data = await file.read()
    return Upload(filename=file.filename, content_type=file.content_type or "application/octet-stream", data=data)


@router.get("/courses", response_model=List[DashboardItem])
async def my_courses(identity: Identity = Depends(get_identity),
                     session: AsyncSession = Depends(get_async_session)):
    rows = await report_service.dashboard(session, identity.user_id)
    return [
        DashboardItem(
            course=CourseOut.model_validate(row["course"]),
            enrolled_at=row["enrolled_at"],
            total_steps=row["total_steps"],
            completed_steps=row["completed_steps"],
        )
        for row in rows
    ]


@router.get("/courses/{course_id}", response_model=CourseStepsOut)
async def course_steps(course_id: int, identity: Identity = Depends(get_identity),
                       session: AsyncSession = Depends(get_async_session)):
    course, rows = await report_service.learner_course(session, identity.user_id, course_id)
    return CourseStepsOut(
        course=CourseOut.model_validate(course),
        steps=[StepStatusOut.from_row(row) for row in rows],
    )


@router.get("/steps/{step_id}", response_model=StepDetailOut)
async def step_detail(step_id: int, identity: Identity = Depends(get_identity),
                      session: AsyncSession = Depends(get_async_session)):
    step, progress = await report_service.learner_step(session, identity.user_id, step_id)
    course = await get_course(session, step.course_id)
    return StepDetailOut(
        course=CourseOut.model_validate(course),
        step=StepOut.from_step(step),
        progress=ProgressOut.model_validate(progress),
    )


@router.post("/steps/{step_id}/submit", response_model=ProgressOut)
async def submit_step(
    step_id: int,
    text_answer: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_async_session),
    storage: ArtifactStore = Depends(get_artifact_store),
):
    logger.info(f"User {identity.user_id} submitting answer for step {step_id}")
    upload = await read_upload(file)
    progress = await submission_service.submit_answer(
        session, storage, identity.user_id, step_id, text_answer=text_answer, upload=upload
    )
    await log_activity(identity.user_id, f"Submitted step {step_id}", "step", step_id)
    return progress
