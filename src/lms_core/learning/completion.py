"""Completion gate: decides when an enrollment becomes completed.

Marking completion is a one-way transition. Certificate issuance is handed
to listeners as a `CompletionEvent` after the enrollment write commits; a
listener failure never undoes the recorded completion.
"""

from __future__ import annotations

import logging
import string
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from lms_core.errors import PrerequisiteNotMet
from lms_core.learning.models import Course, Enrollment, utcnow
from lms_core.learning.progress import aggregate_progress
from lms_core.learning.questions import Exam

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


class CompletionEvent(BaseModel):
    learner_id: str
    course_id: str
    course_title: str = ""
    certificate_id: str
    completed_at: datetime


class CompletionResult(BaseModel):
    completed: bool
    newly_completed: bool = False
    certificate_id: Optional[str] = None
    reason: Optional[str] = None
    event: Optional[CompletionEvent] = None


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_certificate_id(
    learner_id: str,
    course_id: str,
    issued_at: datetime,
    prefix: str = "CERT",
) -> str:
    """``CERT-<learner[:4]>-<course[:4]>-<base36 epoch millis>``."""
    millis = int(issued_at.timestamp() * 1000)
    return f"{prefix}-{learner_id[:4]}-{course_id[:4]}-{_base36(millis)}"


def exam_required(course: Course) -> bool:
    return course.final_exam is not None and course.final_exam.is_enabled


def ensure_exam_available(enrollment: Enrollment, exam: Exam) -> None:
    """Refuse an exam attempt whose lesson prerequisite is unmet."""
    if exam.require_all_lessons_completed and not enrollment.all_lessons_completed:
        raise PrerequisiteNotMet("You need to complete all lessons before taking the final exam")


def completion_blocker(enrollment: Enrollment, course: Course) -> Optional[str]:
    """Why ``enrollment`` cannot complete yet, or None if it can."""
    summary = aggregate_progress(enrollment.lesson_progress)
    if not summary.is_completed:
        return f"Course progress is {summary.overall_progress}%, all lessons and quizzes must be completed"
    if exam_required(course) and not enrollment.exam_completed:
        return "Final exam must be completed before course can be marked as completed"
    return None


def can_complete(enrollment: Enrollment, course: Course) -> bool:
    return completion_blocker(enrollment, course) is None


def attempt_completion(
    enrollment: Enrollment,
    course: Course,
    *,
    now: Optional[datetime] = None,
    certificate_prefix: str = "CERT",
) -> CompletionResult:
    """
    Mark ``enrollment`` completed when the gate allows it.

    Idempotent: an already-completed enrollment returns its existing
    certificate id and no new event. The enrollment is edited in place; the
    caller persists it and then delivers ``result.event``.
    """
    if enrollment.is_completed:
        return CompletionResult(completed=True, certificate_id=enrollment.certificate_id)

    reason = completion_blocker(enrollment, course)
    if reason is not None:
        logger.info("Completion of %s blocked: %s", enrollment.id, reason)
        return CompletionResult(completed=False, reason=reason)

    now = now or utcnow()
    certificate_id = generate_certificate_id(
        enrollment.learner_id, enrollment.course_id, now, prefix=certificate_prefix
    )
    enrollment.is_completed = True
    enrollment.status = "completed"
    enrollment.completed_at = now
    enrollment.certificate_issued = True
    enrollment.certificate_id = certificate_id
    enrollment.certificate_issued_at = now
    logger.info("Enrollment %s completed, certificate %s", enrollment.id, certificate_id)
    return CompletionResult(
        completed=True,
        newly_completed=True,
        certificate_id=certificate_id,
        event=CompletionEvent(
            learner_id=enrollment.learner_id,
            course_id=enrollment.course_id,
            course_title=course.title,
            certificate_id=certificate_id,
            completed_at=now,
        ),
    )
