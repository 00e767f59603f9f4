import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.api.routes_student import read_upload
from stepwise.db.database import get_async_session
from stepwise.models.course import (
    CourseIn, CourseListItem, CourseOut, EnrollmentOut, EnrollRequest, StepMove, StepOut,
)
from stepwise.models.progress import (
    AdminDashboardOut, AdminStats, CourseProgressRow, CourseStepsOut, ProgressOut,
    ReconcileOut, ReviewRequest, StepStatusOut, SubmissionOut,
)
from stepwise.security import Identity, require_admin
from stepwise.services import (
    course_service, enrollment_service, report_service, submission_service,
)
from stepwise.services.activity_service import log_activity
from stepwise.services.storage_service import ArtifactStore, get_artifact_store

router = APIRouter(tags=["Admin"], dependencies=[Depends(require_admin)])

logger = logging.getLogger("routes_admin")


def _answer_types(answer_text: bool, answer_file: bool) -> List[str]:
    types = []
    if answer_text:
        types.append("text")
    if answer_file:
        types.append("file")
    return types


@router.get("", response_model=AdminDashboardOut)
async def admin_dashboard(session: AsyncSession = Depends(get_async_session)):
    stats = await report_service.admin_stats(session)
    rows = await report_service.pending_submissions(session, limit=10, newest_first=True)
    return AdminDashboardOut(
        stats=AdminStats(**stats),
        pending_submissions=[SubmissionOut.from_row(row) for row in rows],
    )


# === Courses ===

@router.get("/courses", response_model=List[CourseListItem])
async def list_courses(session: AsyncSession = Depends(get_async_session)):
    rows = await course_service.list_courses(session)
    return [
        CourseListItem(
            **CourseOut.model_validate(row["course"]).model_dump(),
            steps_count=row["steps_count"],
            enrolled_count=row["enrolled_count"],
        )
        for row in rows
    ]


@router.post("/courses", response_model=CourseOut, status_code=201)
async def create_course(data: CourseIn, session: AsyncSession = Depends(get_async_session)):
    return await course_service.create_course(session, data.title, data.description, data.image_url)


@router.put("/courses/{course_id}", response_model=CourseOut)
async def update_course(course_id: int, data: CourseIn, session: AsyncSession = Depends(get_async_session)):
    return await course_service.update_course(session, course_id, data.title, data.description, data.image_url)


@router.delete("/courses/{course_id}", status_code=204)
async def delete_course(course_id: int, session: AsyncSession = Depends(get_async_session),
                        storage: ArtifactStore = Depends(get_artifact_store)):
    await course_service.delete_course(session, storage, course_id)


# === Steps ===

@router.get("/courses/{course_id}/steps", response_model=List[StepOut])
async def list_steps(course_id: int, session: AsyncSession = Depends(get_async_session)):
    steps = await course_service.list_steps(session, course_id)
    return [StepOut.from_step(step) for step in steps]


@router.post("/courses/{course_id}/steps", response_model=StepOut, status_code=201)
async def add_step(
    course_id: int,
    title: str = Form(...),
    content: Optional[str] = Form(None),
    step_type: str = Form("task"),
    answer_text: bool = Form(False),
    answer_file: bool = Form(False),
    video: Optional[UploadFile] = File(None),
    session: AsyncSession = Depends(get_async_session),
    storage: ArtifactStore = Depends(get_artifact_store),
):
    step = await course_service.add_step(
        session, storage, course_id, title,
        content=content,
        step_type=step_type,
        answer_types=_answer_types(answer_text, answer_file),
        video=await read_upload(video),
    )
    return StepOut.from_step(step)


@router.put("/steps/{step_id}", response_model=StepOut)
async def update_step(
    step_id: int,
    title: str = Form(...),
    content: Optional[str] = Form(None),
    step_type: str = Form("task"),
    answer_text: bool = Form(False),
    answer_file: bool = Form(False),
    remove_video: bool = Form(False),
    video: Optional[UploadFile] = File(None),
    session: AsyncSession = Depends(get_async_session),
    storage: ArtifactStore = Depends(get_artifact_store),
):
    step = await course_service.update_step(
        session, storage, step_id, title,
        content=content,
        step_type=step_type,
        answer_types=_answer_types(answer_text, answer_file),
        remove_video=remove_video,
        video=await read_upload(video),
    )
    return StepOut.from_step(step)


@router.delete("/steps/{step_id}", status_code=204)
async def delete_step(step_id: int, session: AsyncSession = Depends(get_async_session),
                      storage: ArtifactStore = Depends(get_artifact_store)):
    await course_service.delete_step(session, storage, step_id)


@router.post("/steps/{step_id}/move", response_model=StepOut)
async def move_step(step_id: int, data: StepMove, session: AsyncSession = Depends(get_async_session)):
    step = await course_service.move_step(session, step_id, data.direction)
    return StepOut.from_step(step)


# === Enrollments ===

@router.get("/enrollments", response_model=List[EnrollmentOut])
async def list_enrollments(session: AsyncSession = Depends(get_async_session)):
    return await enrollment_service.list_enrollments(session)


@router.post("/enrollments", response_model=EnrollmentOut, status_code=201)
async def enroll(data: EnrollRequest, session: AsyncSession = Depends(get_async_session)):
    enrollment = await enrollment_service.enroll_user(session, data.user_id, data.course_id)
    await log_activity(data.user_id, f"Enrolled in course {data.course_id}", "course", data.course_id)
    return enrollment


@router.delete("/enrollments/{enrollment_id}", status_code=204)
async def unenroll(enrollment_id: int, session: AsyncSession = Depends(get_async_session),
                   storage: ArtifactStore = Depends(get_artifact_store)):
    await enrollment_service.unenroll(session, storage, enrollment_id)


# === Submissions ===

@router.get("/submissions", response_model=List[SubmissionOut])
async def list_submissions(session: AsyncSession = Depends(get_async_session)):
    rows = await report_service.pending_submissions(session)
    return [SubmissionOut.from_row(row) for row in rows]


@router.get("/submissions/{progress_id}", response_model=SubmissionOut)
async def submission_detail(progress_id: int, session: AsyncSession = Depends(get_async_session)):
    return SubmissionOut.from_row(await report_service.submission_detail(session, progress_id))


@router.post("/submissions/{progress_id}/approve", response_model=ProgressOut)
async def approve_submission(progress_id: int, identity: Identity = Depends(require_admin),
                             session: AsyncSession = Depends(get_async_session)):
    progress = await submission_service.review_submission(session, progress_id, submission_service.DECISION_APPROVE)
    logger.info(f"Admin {identity.user_id} approved submission {progress_id}")
    await log_activity(progress.user_id, f"Step {progress.step_id} approved", "step", progress.step_id)
    return progress


@router.post("/submissions/{progress_id}/reject", response_model=ProgressOut)
async def reject_submission(progress_id: int, data: ReviewRequest, identity: Identity = Depends(require_admin),
                            session: AsyncSession = Depends(get_async_session)):
    progress = await submission_service.review_submission(
        session, progress_id, submission_service.DECISION_REJECT, comment=data.comment
    )
    logger.info(f"Admin {identity.user_id} rejected submission {progress_id}")
    await log_activity(progress.user_id, f"Step {progress.step_id} rejected", "step", progress.step_id)
    return progress


# === Progress ===

@router.get("/progress", response_model=List[CourseProgressRow])
async def course_progress(course_id: int, session: AsyncSession = Depends(get_async_session)):
    return await report_service.course_progress(session, course_id)


@router.get("/progress/{user_id}/{course_id}", response_model=CourseStepsOut)
async def user_progress(user_id: int, course_id: int, session: AsyncSession = Depends(get_async_session)):
    course, rows = await report_service.user_course_progress(session, user_id, course_id)
    return CourseStepsOut(
        course=CourseOut.model_validate(course),
        steps=[StepStatusOut.from_row(row) for row in rows],
    )


@router.post("/progress/{user_id}/{course_id}/reconcile", response_model=ReconcileOut)
async def reconcile_progress(user_id: int, course_id: int, session: AsyncSession = Depends(get_async_session)):
    changed = await enrollment_service.reconcile_user_course(session, user_id, course_id)
    return ReconcileOut(changed=[ProgressOut.model_validate(record) for record in changed])


@router.post("/progress/{user_id}/steps/{step_id}/open", response_model=ProgressOut)
async def force_open_step(user_id: int, step_id: int, identity: Identity = Depends(require_admin),
                          session: AsyncSession = Depends(get_async_session)):
    progress = await submission_service.force_open(session, user_id, step_id)
    logger.warning(f"Admin {identity.user_id} force-opened step {step_id} for user {user_id}")
    return progress
