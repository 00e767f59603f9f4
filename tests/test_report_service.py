import pytest

from stepwise.services import enrollment_service, report_service, submission_service
from stepwise.services.errors import UnauthorizedTransition
from stepwise.services.submission_service import DECISION_APPROVE


async def test_step_statuses_report_absent_rows_as_locked(session, build_course):
    course, steps = await build_course(["info", ["text"], ["file"]])
    await enrollment_service.enroll_user(session, 1, course.id)

    rows = await report_service.step_statuses(session, 1, course.id)

    assert [r["status"] for r in rows] == ["completed", "open", "locked"]
    assert rows[2]["progress_id"] is None
    assert [r["step"].id for r in rows] == [s.id for s in steps]


async def test_dashboard_counts_completed_steps(session, storage, build_course):
    course, steps = await build_course(["info", ["text"], ["file"]], title="Main")
    other, _ = await build_course([["text"]], title="Other")
    await enrollment_service.enroll_user(session, 1, course.id)
    progress = await submission_service.submit_answer(session, storage, 1, steps[1].id, text_answer="a")
    await submission_service.review_submission(session, progress.id, DECISION_APPROVE)

    rows = await report_service.dashboard(session, 1)

    assert len(rows) == 1
    assert (rows[0]["course"].title, rows[0]["total_steps"], rows[0]["completed_steps"]) == ("Main", 3, 2)


async def test_learner_course_requires_enrollment(session, build_course):
    course, _ = await build_course(["info"])

    with pytest.raises(UnauthorizedTransition):
        await report_service.learner_course(session, 1, course.id)


async def test_learner_step_refuses_locked_steps(session, build_course):
    course, steps = await build_course([["text"], ["text"]])
    await enrollment_service.enroll_user(session, 1, course.id)

    step, progress = await report_service.learner_step(session, 1, steps[0].id)
    assert progress.status == "open"
    with pytest.raises(UnauthorizedTransition):
        await report_service.learner_step(session, 1, steps[1].id)


async def test_pending_queue_and_admin_stats(session, storage, build_course):
    course, steps = await build_course([["text"]])
    for user_id in (1, 2, 3):
        await enrollment_service.enroll_user(session, user_id, course.id)
    for user_id in (2, 1):
        await submission_service.submit_answer(session, storage, user_id, steps[0].id, text_answer="a")

    queue = await report_service.pending_submissions(session)
    stats = await report_service.admin_stats(session)

    assert [row["progress"].user_id for row in queue] == [2, 1]
    assert all(row["course"].id == course.id for row in queue)
    assert stats == {"users": 3, "courses": 1, "pending": 2}
    assert len(await report_service.pending_submissions(session, limit=1)) == 1


async def test_course_progress_overview(session, storage, build_course):
    course, steps = await build_course(["info", ["text"], ["text"]])
    await enrollment_service.enroll_user(session, 1, course.id)
    await enrollment_service.enroll_user(session, 2, course.id)
    await submission_service.submit_answer(session, storage, 2, steps[1].id, text_answer="a")

    rows = await report_service.course_progress(session, course.id)

    assert rows == [
        {"user_id": 1, "total_steps": 3, "completed_steps": 1, "pending_steps": 0},
        {"user_id": 2, "total_steps": 3, "completed_steps": 1, "pending_steps": 1},
    ]


async def test_submission_detail(session, storage, build_course):
    course, steps = await build_course([["text"]], title="Detail")
    await enrollment_service.enroll_user(session, 4, course.id)
    progress = await submission_service.submit_answer(session, storage, 4, steps[0].id, text_answer="a")

    detail = await report_service.submission_detail(session, progress.id)

    assert detail["progress"].id == progress.id
    assert detail["step"].id == steps[0].id
    assert detail["course"].title == "Detail"
