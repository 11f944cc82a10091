from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from lms_core.learning.questions import Exam, Quiz


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enrollment_id(learner_id: str, course_id: str) -> str:
    """Enrollment documents are keyed by learner and course."""
    return f"{learner_id}_{course_id}"


class Resource(BaseModel):
    """Downloadable or linked material attached to a lesson."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = ""
    url: str = ""
    type: str = "link"


class Lesson(BaseModel):
    """Single lesson in a course, optionally followed by a quiz."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = ""
    content: str = ""
    duration_minutes: int = Field(0, ge=0)
    resources: List[Resource] = Field(default_factory=list)
    quiz: Optional[Quiz] = None


class Course(BaseModel):
    """Catalog entry with ordered lessons and an optional final exam."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = "Untitled Course"
    description: str = ""
    category_id: Optional[str] = None
    instructor_id: Optional[str] = None
    price: float = Field(0.0, ge=0)
    image_url: str = ""
    status: str = "published"
    lessons: List[Lesson] = Field(default_factory=list)
    final_exam: Optional[Exam] = None
    enrollment_count: int = Field(0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def lesson(self, lesson_id: str) -> Optional[Lesson]:
        return next((lesson for lesson in self.lessons if lesson.id == lesson_id), None)


class QuestionResult(BaseModel):
    """Outcome of grading one question inside an attempt."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    correct: bool
    points: int
    possible_points: int
    user_answer: Any = None


class Attempt(BaseModel):
    """Immutable record of one scored submission against a quiz or exam."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    assessment_id: str
    assessment_kind: Literal["quiz", "exam", "assessment"] = "quiz"
    learner_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    questions: Tuple[QuestionResult, ...] = ()
    total_points: int = 0
    earned_points: int = 0
    score: int = Field(0, ge=0, le=100)
    passed: bool = False
    attempt_number: int = Field(1, ge=1)
    time_spent: int = 0


class ResourceProgress(BaseModel):
    resource_id: str
    accessed: bool = False
    download_count: int = 0
    last_accessed: Optional[datetime] = None


class LessonProgress(BaseModel):
    """Per-learner state for one lesson and its quiz."""

    lesson_id: str
    progress: int = Field(0, ge=0, le=100)
    completed: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_accessed: Optional[datetime] = None
    time_spent: int = Field(0, ge=0, description="Seconds.")
    quiz_id: Optional[str] = None
    quiz_attempts: List[Attempt] = Field(default_factory=list)
    quiz_completed: bool = False
    quiz_best_score: int = 0
    quiz_last_attempt_at: Optional[datetime] = None
    resources: List[ResourceProgress] = Field(default_factory=list)

    @classmethod
    def for_lesson(cls, lesson: Lesson) -> "LessonProgress":
        """Fresh progress skeleton mirroring the lesson's quiz and resources."""
        return cls(
            lesson_id=lesson.id,
            quiz_id=lesson.quiz.id if lesson.quiz else None,
            resources=[ResourceProgress(resource_id=resource.id) for resource in lesson.resources],
        )


class Note(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    lesson_id: Optional[str] = None
    text: str
    created_at: datetime = Field(default_factory=utcnow)


class Enrollment(BaseModel):
    """Relationship and accumulated progress between one learner and one course.

    ``progress``, ``completed_lessons`` and ``total_lessons`` are derived from
    ``lesson_progress`` and must only be written through
    :meth:`ProgressTracker.refresh`.
    """

    id: str
    learner_id: str
    course_id: str
    course_title: str = ""
    status: Literal["active", "completed"] = "active"
    enrolled_at: datetime = Field(default_factory=utcnow)
    last_accessed: Optional[datetime] = None
    lesson_progress: List[LessonProgress] = Field(default_factory=list)
    current_lesson_id: Optional[str] = None
    progress: int = Field(0, ge=0, le=100)
    total_lessons: int = 0
    completed_lessons: int = 0
    exam_id: Optional[str] = None
    exam_attempts: List[Attempt] = Field(default_factory=list)
    exam_completed: bool = False
    exam_best_score: int = 0
    exam_last_attempt_at: Optional[datetime] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    certificate_issued: bool = False
    certificate_id: Optional[str] = None
    certificate_issued_at: Optional[datetime] = None
    notes: List[Note] = Field(default_factory=list)

    def lesson(self, lesson_id: str) -> Optional[LessonProgress]:
        return next((item for item in self.lesson_progress if item.lesson_id == lesson_id), None)

    @property
    def all_lessons_completed(self) -> bool:
        return all(item.completed for item in self.lesson_progress)
