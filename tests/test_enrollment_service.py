import pytest

from stepwise.services import enrollment_service, gating_service, submission_service
from stepwise.services.errors import AlreadyEnrolled, IntegrityViolation, NotFound

from conftest import make_upload


async def test_enroll_twice_is_refused(session, build_course):
    course, _ = await build_course([["text"]])
    await enrollment_service.enroll_user(session, 1, course.id)

    with pytest.raises(AlreadyEnrolled):
        await enrollment_service.enroll_user(session, 1, course.id)
    assert len(await enrollment_service.list_enrollments(session)) == 1


async def test_enroll_into_missing_course(session):
    with pytest.raises(NotFound):
        await enrollment_service.enroll_user(session, 1, 42)


async def test_unenroll_drops_progress_and_files(session, storage, storage_backend, build_course):
    course, steps = await build_course(["info", ["file"]])
    other, other_steps = await build_course([["text"]], title="Other")
    enrollment = await enrollment_service.enroll_user(session, 1, course.id)
    await enrollment_service.enroll_user(session, 1, other.id)
    progress = await submission_service.submit_answer(session, storage, 1, steps[1].id, upload=make_upload())
    key = progress.file_url.rsplit("/", 1)[-1]

    await enrollment_service.unenroll(session, storage, enrollment.id)

    assert await gating_service.get_progress_map(session, 1, [s.id for s in steps]) == {}
    assert other_steps[0].id in await gating_service.get_progress_map(session, 1, [other_steps[0].id])
    assert storage_backend.deleted == [key]
    with pytest.raises(IntegrityViolation):
        await gating_service.reconcile(session, 1, course.id)


async def test_unenroll_missing(session, storage):
    with pytest.raises(NotFound):
        await enrollment_service.unenroll(session, storage, 7)


async def test_reconcile_user_course_heals_manual_changes(session, storage, build_course):
    course, steps = await build_course([["text"], "info", ["text"]])
    await enrollment_service.enroll_user(session, 1, course.id)
    progress = await submission_service.get_progress(session, 1, steps[0].id)
    # ручная правка в обход движка
    progress.status = "completed"
    await session.commit()

    changed = await enrollment_service.reconcile_user_course(session, 1, course.id)

    assert [(r.step_id, r.status) for r in changed] == [(steps[1].id, "completed"), (steps[2].id, "open")]
    assert await enrollment_service.reconcile_user_course(session, 1, course.id) == []
