from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from .course import CourseOut, StepOut


class ProgressOut(BaseModel):
    id: int
    user_id: int
    step_id: int
    status: str
    file_url: Optional[str] = None
    text_answer: Optional[str] = None
    admin_comment: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StepStatusOut(BaseModel):
    step: StepOut
    status: str
    progress_id: Optional[int] = None
    file_url: Optional[str] = None
    text_answer: Optional[str] = None
    admin_comment: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "StepStatusOut":
        return cls(**{**row, "step": StepOut.from_step(row["step"])})


class CourseStepsOut(BaseModel):
    course: CourseOut
    steps: List[StepStatusOut]


class StepDetailOut(BaseModel):
    course: CourseOut
    step: StepOut
    progress: ProgressOut


class DashboardItem(BaseModel):
    course: CourseOut
    enrolled_at: Optional[datetime] = None
    total_steps: int
    completed_steps: int


class ReviewRequest(BaseModel):
    comment: Optional[str] = None


class SubmissionOut(BaseModel):
    progress: ProgressOut
    step: StepOut
    course: CourseOut

    @classmethod
    def from_row(cls, row: dict) -> "SubmissionOut":
        return cls(
            progress=ProgressOut.model_validate(row["progress"]),
            step=StepOut.from_step(row["step"]),
            course=CourseOut.model_validate(row["course"]),
        )


class AdminStats(BaseModel):
    users: int
    courses: int
    pending: int


class AdminDashboardOut(BaseModel):
    stats: AdminStats
    pending_submissions: List[SubmissionOut]


class CourseProgressRow(BaseModel):
    user_id: int
    total_steps: int
    completed_steps: int
    pending_steps: int


class ReconcileOut(BaseModel):
    changed: List[ProgressOut]
