from pydantic import BaseModel
from typing import List, Optional, Literal
from datetime import datetime


class CourseIn(BaseModel):
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None


class CourseOut(CourseIn):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CourseListItem(CourseOut):
    steps_count: int = 0
    enrolled_count: int = 0


class StepOut(BaseModel):
    id: int
    course_id: int
    title: str
    content: Optional[str] = None
    video_url: Optional[str] = None
    position: int
    step_type: str
    answer_requirement: List[str] = []

    class Config:
        from_attributes = True

    @classmethod
    def from_step(cls, step) -> "StepOut":
        return cls(
            id=step.id,
            course_id=step.course_id,
            title=step.title,
            content=step.content,
            video_url=step.video_url,
            position=step.position,
            step_type=step.step_type,
            answer_requirement=sorted(step.answer_requirement),
        )


class StepMove(BaseModel):
    direction: Literal["up", "down"]


class EnrollRequest(BaseModel):
    user_id: int
    course_id: int


class EnrollmentOut(BaseModel):
    id: int
    user_id: int
    course_id: int
    enrolled_at: Optional[datetime] = None

    class Config:
        from_attributes = True
