from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel

from lms_core.config.schema import ProgressConfig
from lms_core.errors import NotFound
from lms_core.learning.grading import percentage
from lms_core.learning.models import (
    Attempt,
    Course,
    Enrollment,
    LessonProgress,
    ResourceProgress,
    utcnow,
)

logger = logging.getLogger(__name__)


class ProgressSummary(BaseModel):
    """Course-level roll-up of lesson and quiz completion."""

    overall_progress: int
    completed_lessons: int
    completed_units: int
    total_units: int
    is_completed: bool


def completion_units(lesson_progress: Iterable[LessonProgress]) -> List[bool]:
    """Flatten lessons into countable units: one per lesson, one more per attached quiz."""
    units: List[bool] = []
    for lesson in lesson_progress:
        units.append(lesson.completed)
        if lesson.quiz_id:
            units.append(lesson.quiz_completed)
    return units


def aggregate_progress(lesson_progress: Sequence[LessonProgress]) -> ProgressSummary:
    """Recompute course progress from scratch. Never patch the result incrementally."""
    units = completion_units(lesson_progress)
    completed_units = sum(1 for done in units if done)
    overall = percentage(completed_units, len(units))
    return ProgressSummary(
        overall_progress=overall,
        completed_lessons=sum(1 for lesson in lesson_progress if lesson.completed),
        completed_units=completed_units,
        total_units=len(units),
        is_completed=overall == 100,
    )


class ProgressTracker:
    """
    Apply learner activity to an `Enrollment` and keep its derived fields honest.

    Every mutating method edits the enrollment in place, then calls
    :meth:`refresh`, which recomputes ``progress``, ``completed_lessons``,
    ``total_lessons`` and ``current_lesson_id`` from ``lesson_progress`` via
    :func:`aggregate_progress`. Callers never set those fields themselves.

    The tracker performs no I/O. Services call it inside a store transaction
    and write the enrollment back once the transaction body returns.

    Parameters
    ----------
    config : ProgressConfig | None
        Supplies ``lesson_time_increment_seconds``, the time credited to a
        lesson when an update does not report how long the learner spent.

    Examples
    --------
    >>> tracker = ProgressTracker()
    >>> summary = tracker.update_lesson(enrollment, "lesson-1", completed=True)
    >>> summary.completed_lessons
    1
    """

    def __init__(self, config: ProgressConfig | None = None):
        self.config = config or ProgressConfig()

    def refresh(self, enrollment: Enrollment) -> ProgressSummary:
        """Recompute the derived progress fields of ``enrollment``."""
        summary = aggregate_progress(enrollment.lesson_progress)
        enrollment.progress = summary.overall_progress
        enrollment.completed_lessons = summary.completed_lessons
        enrollment.total_lessons = len(enrollment.lesson_progress)
        enrollment.current_lesson_id = next(
            (item.lesson_id for item in enrollment.lesson_progress if not item.completed),
            enrollment.lesson_progress[-1].lesson_id if enrollment.lesson_progress else None,
        )
        return summary

    def _lesson(self, enrollment: Enrollment, lesson_id: str) -> LessonProgress:
        lesson = enrollment.lesson(lesson_id)
        if lesson is None:
            raise NotFound("Lesson progress", lesson_id)
        return lesson

    def update_lesson(
        self,
        enrollment: Enrollment,
        lesson_id: str,
        *,
        progress_percent: Optional[int] = None,
        completed: Optional[bool] = None,
        time_spent: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ProgressSummary:
        """
        Record lesson activity.

        A lesson counts as completed once ``progress_percent`` reaches 100 or
        ``completed`` is True. Completion is sticky: later updates with a lower
        percentage do not clear it.
        """
        now = now or utcnow()
        lesson = self._lesson(enrollment, lesson_id)
        percent = progress_percent if progress_percent is not None else lesson.progress
        percent = max(0, min(100, percent))
        is_completed = lesson.completed or percent >= 100 or completed is True
        newly_completed = is_completed and not lesson.completed

        lesson.progress = 100 if is_completed else percent
        lesson.completed = is_completed
        lesson.started_at = lesson.started_at or now
        if newly_completed:
            lesson.completed_at = now
        lesson.last_accessed = now
        increment = time_spent if time_spent is not None else self.config.lesson_time_increment_seconds
        lesson.time_spent += max(0, increment)
        enrollment.last_accessed = now
        return self.refresh(enrollment)

    def record_quiz_attempt(
        self,
        enrollment: Enrollment,
        lesson_id: str,
        attempt: Attempt,
        now: Optional[datetime] = None,
    ) -> ProgressSummary:
        """Append a quiz attempt to the lesson's history and update best score."""
        now = now or utcnow()
        lesson = self._lesson(enrollment, lesson_id)
        lesson.quiz_attempts = [*lesson.quiz_attempts, attempt]
        lesson.quiz_completed = lesson.quiz_completed or attempt.passed
        lesson.quiz_best_score = max(lesson.quiz_best_score, attempt.score)
        lesson.quiz_last_attempt_at = now
        enrollment.last_accessed = now
        return self.refresh(enrollment)

    def record_exam_attempt(
        self,
        enrollment: Enrollment,
        attempt: Attempt,
        now: Optional[datetime] = None,
    ) -> ProgressSummary:
        """Append a final exam attempt to the enrollment's history."""
        now = now or utcnow()
        enrollment.exam_attempts = [*enrollment.exam_attempts, attempt]
        enrollment.exam_completed = enrollment.exam_completed or attempt.passed
        enrollment.exam_best_score = max(enrollment.exam_best_score, attempt.score)
        enrollment.exam_last_attempt_at = now
        enrollment.last_accessed = now
        return self.refresh(enrollment)

    def track_resource(
        self,
        enrollment: Enrollment,
        lesson_id: str,
        resource_id: str,
        now: Optional[datetime] = None,
    ) -> ResourceProgress:
        now = now or utcnow()
        lesson = self._lesson(enrollment, lesson_id)
        resource = next((r for r in lesson.resources if r.resource_id == resource_id), None)
        if resource is None:
            raise NotFound("Resource", resource_id)
        resource.accessed = True
        resource.download_count += 1
        resource.last_accessed = now
        enrollment.last_accessed = now
        return resource

    def sync_with_course(self, enrollment: Enrollment, course: Course) -> ProgressSummary:
        """
        Realign lesson progress after the course's lesson list changed.

        Existing lesson progress is kept (with its quiz id and resource list
        refreshed), new lessons get a blank entry, and removed lessons are
        dropped.
        """
        existing = {item.lesson_id: item for item in enrollment.lesson_progress}
        realigned: List[LessonProgress] = []
        for lesson in course.lessons:
            current = existing.get(lesson.id)
            if current is None:
                realigned.append(LessonProgress.for_lesson(lesson))
                continue
            known = {resource.resource_id: resource for resource in current.resources}
            current.resources = [
                known.get(resource.id) or ResourceProgress(resource_id=resource.id)
                for resource in lesson.resources
            ]
            current.quiz_id = lesson.quiz.id if lesson.quiz else None
            realigned.append(current)
        enrollment.lesson_progress = realigned
        enrollment.course_title = course.title
        enrollment.exam_id = course.final_exam.id if course.final_exam else None
        logger.debug("Synced enrollment %s with %d lessons", enrollment.id, len(realigned))
        return self.refresh(enrollment)
