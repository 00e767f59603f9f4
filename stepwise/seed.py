"""Fill an empty database with a demo course and a few learners at different stages."""
import asyncio
import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from stepwise.config import setup_logging
from stepwise.db.database import AsyncSessionLocal, init_models
from stepwise.db.models import Course
from stepwise.services import course_service, enrollment_service, submission_service
from stepwise.services.storage_service import ArtifactStore, get_artifact_store

logger = logging.getLogger("seed")

DEMO_LEARNERS = (2, 3, 4)


async def seed(session: AsyncSession, storage: ArtifactStore) -> Optional[dict]:
    existing = await session.execute(select(func.count(Course.id)))
    if existing.scalar():
        logger.info("Database already has courses, nothing to seed")
        return None

    basics = await course_service.create_course(
        session, "Основы монтажа", "Пошаговый курс: от первого ролика до готового проекта"
    )
    welcome = await course_service.add_step(session, storage, basics.id, "Добро пожаловать", step_type="info")
    intro = await course_service.add_step(
        session, storage, basics.id, "Расскажите о себе", step_type="task", answer_types=["text"]
    )
    clip = await course_service.add_step(
        session, storage, basics.id, "Первый ролик", step_type="task", answer_types=["file"]
    )
    project = await course_service.add_step(
        session, storage, basics.id, "Итоговый проект", step_type="task", answer_types=["text", "file"]
    )

    advanced = await course_service.create_course(session, "Цветокоррекция", "Работа с цветом")
    await course_service.add_step(
        session, storage, advanced.id, "Первая коррекция", step_type="task", answer_types=["text"]
    )
    await course_service.add_step(session, storage, advanced.id, "Теория цвета", step_type="info")

    first, second, third = DEMO_LEARNERS

    # first: ответ отклонён с комментарием
    await enrollment_service.enroll_user(session, first, basics.id)
    await enrollment_service.enroll_user(session, first, advanced.id)
    progress = await submission_service.submit_answer(session, storage, first, intro.id, text_answer="Привет!")
    await submission_service.review_submission(
        session, progress.id, submission_service.DECISION_REJECT, comment="Расскажите подробнее"
    )

    # second: первое задание принято, второе открыто
    await enrollment_service.enroll_user(session, second, basics.id)
    progress = await submission_service.submit_answer(
        session, storage, second, intro.id, text_answer="Снимаю видео третий год"
    )
    await submission_service.review_submission(session, progress.id, submission_service.DECISION_APPROVE)

    # third: ответ ждёт проверки
    await enrollment_service.enroll_user(session, third, advanced.id)
    result = await course_service.list_steps(session, advanced.id)
    await submission_service.submit_answer(session, storage, third, result[0].id, text_answer="Готово")

    logger.info(f"Seeded courses {basics.id} and {advanced.id} for learners {DEMO_LEARNERS}")
    return {
        "courses": [basics.id, advanced.id],
        "steps": [welcome.id, intro.id, clip.id, project.id],
    }


async def main():
    setup_logging()
    await init_models()
    async with AsyncSessionLocal() as session:
        await seed(session, get_artifact_store())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
