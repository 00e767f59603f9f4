from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from .database import Base

STEP_INFO = "info"
STEP_TASK = "task"
STEP_KINDS = (STEP_INFO, STEP_TASK)

ANSWER_TEXT = "text"
ANSWER_FILE = "file"
ANSWER_TYPES = (ANSWER_TEXT, ANSWER_FILE)

STATUS_LOCKED = "locked"
STATUS_OPEN = "open"
STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True, default=func.now())

    steps = relationship(
        "Step", back_populates="course", cascade="all, delete-orphan", order_by="Step.position"
    )
    enrollments = relationship("Enrollment", back_populates="course", cascade="all, delete-orphan")


class Step(Base):
    __tablename__ = "steps"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=True)
    video_url = Column(Text, nullable=True)
    position = Column(Integer, nullable=False)
    step_type = Column(String(20), nullable=False, default=STEP_TASK)
    answer_type = Column(String(20), nullable=False, default=ANSWER_FILE)  # "text", "file" или "text,file"

    course = relationship("Course", back_populates="steps")
    progress = relationship("StepProgress", back_populates="step", cascade="all, delete-orphan")

    @property
    def answer_requirement(self) -> frozenset:
        if self.step_type != STEP_TASK or not self.answer_type:
            return frozenset()
        return frozenset(part.strip() for part in self.answer_type.split(",") if part.strip())


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    enrolled_at = Column(DateTime, default=func.now())

    course = relationship("Course", back_populates="enrollments")


class StepProgress(Base):
    __tablename__ = "step_progress"
    __table_args__ = (UniqueConstraint("user_id", "step_id", name="uq_progress_user_step"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    step_id = Column(Integer, ForeignKey("steps.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_LOCKED)
    file_url = Column(Text, nullable=True)
    text_answer = Column(Text, nullable=True)
    admin_comment = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    step = relationship("Step", back_populates="progress")
