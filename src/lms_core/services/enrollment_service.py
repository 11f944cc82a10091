"""Service layer for enrollments: joining courses, lesson progress and completion.

Every progress change runs inside a store transaction that reads the course
and the enrollment, lets `ProgressTracker` recompute the derived fields, asks
the completion gate whether the course is now finished, and writes the
enrollment back. Certificate issuance and the legacy mirror happen after the
commit and never undo it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel

from lms_core.config.schema import LegacyConfig
from lms_core.errors import InvalidInput, NotFound
from lms_core.learning.analytics import LearnerCourseStats, learner_course_stats
from lms_core.learning.completion import CompletionResult, attempt_completion
from lms_core.learning.models import (
    Course,
    Enrollment,
    LessonProgress,
    Note,
    ResourceProgress,
    enrollment_id,
    utcnow,
)
from lms_core.learning.progress import ProgressSummary, ProgressTracker, aggregate_progress
from lms_core.services.common import (
    CompletionListener,
    deliver_completion,
    dump,
    load_course,
    load_enrollment,
    require_id,
)
from lms_core.services.user_service import user_from_document
from lms_core.storage import DocumentStore
from lms_core.storage.collection_names import (
    COURSES,
    ENROLLMENTS,
    LEGACY_ENROLLMENTS,
    USER_STATS,
    USERS,
)

logger = logging.getLogger(__name__)


class EnrollResult(BaseModel):
    created: bool
    message: str
    enrollment: Enrollment


class EnrollmentUpdate(BaseModel):
    """Outcome of a progress-changing operation on one enrollment."""

    enrollment: Enrollment
    summary: ProgressSummary
    completion: CompletionResult
    certificate_error: Optional[str] = None


def _course_entry(enrollment: Enrollment) -> Dict[str, Any]:
    return {
        "course_id": enrollment.course_id,
        "course_title": enrollment.course_title,
        "enrolled_at": enrollment.enrolled_at.isoformat(),
        "progress": enrollment.progress,
        "is_completed": enrollment.is_completed,
    }


def _replace_course_entry(
    entries: Iterable[Mapping[str, Any]], course_id: str, entry: Optional[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    kept = [dict(item) for item in entries if item.get("course_id") != course_id]
    if entry is not None:
        kept.append(entry)
    return kept


class EnrollmentService:
    """
    Enrollment lifecycle and lesson progress for learners.

    Parameters
    ----------
    store : DocumentStore
        Backing document store.
    tracker : ProgressTracker | None
        Applies activity to enrollments; a default tracker is built if omitted.
    certificate_prefix : str
        Prefix of generated certificate ids.
    legacy : LegacyConfig | None
        Whether enrollment summaries are mirrored to the legacy collection.
    listeners : Iterable[CompletionListener]
        Called with each `CompletionEvent` after the completing write commits.
    """

    def __init__(
        self,
        store: DocumentStore,
        tracker: Optional[ProgressTracker] = None,
        *,
        certificate_prefix: str = "CERT",
        legacy: Optional[LegacyConfig] = None,
        listeners: Iterable[CompletionListener] = (),
    ):
        self.store = store
        self.tracker = tracker or ProgressTracker()
        self.certificate_prefix = certificate_prefix
        self.legacy = legacy or LegacyConfig()
        self.listeners: List[CompletionListener] = list(listeners)

    def add_listener(self, listener: CompletionListener) -> None:
        self.listeners.append(listener)

    def new_enrollment(self, learner_id: str, course: Course, now: Optional[datetime] = None) -> Enrollment:
        """Blank enrollment with one progress entry per course lesson."""
        now = now or utcnow()
        enrollment = Enrollment(
            id=enrollment_id(learner_id, course.id),
            learner_id=learner_id,
            course_id=course.id,
            course_title=course.title,
            enrolled_at=now,
            last_accessed=now,
            lesson_progress=[LessonProgress.for_lesson(lesson) for lesson in course.lessons],
            exam_id=course.final_exam.id if course.final_exam else None,
        )
        self.tracker.refresh(enrollment)
        return enrollment

    def enroll(self, learner_id: str, course_id: str) -> EnrollResult:
        """Enroll a learner. Enrolling twice returns the existing enrollment unchanged."""
        require_id(learner_id, "learner_id")
        require_id(course_id, "course_id")
        now = utcnow()

        def body(reader, writer) -> EnrollResult:
            user_data = reader.get(USERS, learner_id)
            if user_data is None:
                raise NotFound("User", learner_id)
            course = load_course(reader, course_id)
            key = enrollment_id(learner_id, course_id)
            existing = reader.get(ENROLLMENTS, key)
            stats = reader.get(USER_STATS, learner_id) or {}
            if existing is not None:
                return EnrollResult(
                    created=False,
                    message="Already enrolled in this course",
                    enrollment=Enrollment.model_validate(existing),
                )

            enrollment = self.new_enrollment(learner_id, course, now)
            user = user_from_document({**user_data, "id": learner_id})
            writer.set(ENROLLMENTS, key, dump(enrollment))
            writer.update(COURSES, course_id, {"enrollment_count": course.enrollment_count + 1})
            writer.update(
                USERS,
                learner_id,
                {
                    "enrolled_courses": _replace_course_entry(
                        user.enrolled_courses, course_id, _course_entry(enrollment)
                    )
                },
            )
            writer.set(
                USER_STATS,
                learner_id,
                {"user_id": learner_id, "courses_enrolled": int(stats.get("courses_enrolled", 0)) + 1},
                merge=True,
            )
            return EnrollResult(created=True, message="Enrolled successfully", enrollment=enrollment)

        result = self.store.with_transaction(body)
        if result.created:
            logger.info("Enrolled %s in course %s", learner_id, course_id)
            self.mirror_legacy(result.enrollment)
        return result

    def get_enrollment(self, learner_id: str, course_id: str) -> Enrollment:
        return load_enrollment(self.store, learner_id, course_id)

    def is_enrolled(self, learner_id: str, course_id: str) -> bool:
        return self.store.exists(ENROLLMENTS, enrollment_id(learner_id, course_id))

    def get_learner_enrollments(self, learner_id: str) -> List[Enrollment]:
        """A learner's enrollments, most recently accessed first."""
        docs = self.store.query(ENROLLMENTS, where={"learner_id": learner_id})
        enrollments = [Enrollment.model_validate(doc) for doc in docs]
        enrollments.sort(key=lambda item: item.last_accessed or item.enrolled_at, reverse=True)
        return enrollments

    def get_course_enrollments(self, course_id: str) -> List[Dict[str, Any]]:
        """Enrollment summaries for a course, annotated with learner names."""
        rows: List[Dict[str, Any]] = []
        for doc in self.store.query(ENROLLMENTS, where={"course_id": course_id}, order_by="enrolled_at"):
            user_data = self.store.get(USERS, doc["learner_id"])
            user = user_from_document({**user_data, "id": doc["learner_id"]}) if user_data else None
            rows.append(
                {
                    "id": doc["id"],
                    "learner_id": doc["learner_id"],
                    "learner_name": user.display_name if user else "Unknown User",
                    "learner_email": user.email if user else "",
                    "enrolled_at": doc.get("enrolled_at"),
                    "progress": doc.get("progress", 0),
                    "is_completed": doc.get("is_completed", False),
                }
            )
        return rows

    def stage_enrollment(self, writer, enrollment: Enrollment, user_data: Optional[Mapping[str, Any]]) -> None:
        """Stage the enrollment write plus the progress entry on the user record."""
        writer.set(ENROLLMENTS, enrollment.id, dump(enrollment))
        if user_data is not None:
            user = user_from_document({**user_data, "id": enrollment.learner_id})
            writer.update(
                USERS,
                enrollment.learner_id,
                {
                    "enrolled_courses": _replace_course_entry(
                        user.enrolled_courses, enrollment.course_id, _course_entry(enrollment)
                    )
                },
            )

    def after_commit(
        self,
        enrollment: Enrollment,
        summary: ProgressSummary,
        completion: CompletionResult,
    ) -> EnrollmentUpdate:
        """Post-commit side effects: legacy mirror and completion listeners."""
        self.mirror_legacy(enrollment)
        error = deliver_completion(completion.event, self.listeners)
        return EnrollmentUpdate(
            enrollment=enrollment,
            summary=summary,
            completion=completion,
            certificate_error=error,
        )

    def complete_if_ready(self, enrollment: Enrollment, course: Course, now: datetime) -> CompletionResult:
        return attempt_completion(enrollment, course, now=now, certificate_prefix=self.certificate_prefix)

    def update_lesson_progress(
        self,
        learner_id: str,
        course_id: str,
        lesson_id: str,
        *,
        progress_percent: Optional[int] = None,
        completed: Optional[bool] = None,
        time_spent: Optional[int] = None,
    ) -> EnrollmentUpdate:
        """
        Record progress on a lesson and complete the course if that finished it.

        Args:
            progress_percent: New progress on the lesson, clamped to 0..100.
            completed: Mark the lesson complete regardless of percentage.
            time_spent: Seconds to add; defaults to the configured increment.

        Returns:
            The updated enrollment, its progress summary and the completion
            outcome. ``certificate_error`` is set when completion was recorded
            but a listener failed.
        """
        require_id(lesson_id, "lesson_id")
        now = utcnow()

        def body(reader, writer):
            course = load_course(reader, course_id)
            enrollment = load_enrollment(reader, learner_id, course_id)
            user_data = reader.get(USERS, learner_id)
            if course.lesson(lesson_id) is None:
                raise NotFound("Lesson", lesson_id)
            summary = self.tracker.update_lesson(
                enrollment,
                lesson_id,
                progress_percent=progress_percent,
                completed=completed,
                time_spent=time_spent,
                now=now,
            )
            completion = self.complete_if_ready(enrollment, course, now)
            self.stage_enrollment(writer, enrollment, user_data)
            return enrollment, summary, completion

        enrollment, summary, completion = self.store.with_transaction(body)
        logger.debug("Lesson %s of %s now at %s%%", lesson_id, enrollment.id, enrollment.progress)
        return self.after_commit(enrollment, summary, completion)

    def track_resource_access(
        self, learner_id: str, course_id: str, lesson_id: str, resource_id: str
    ) -> ResourceProgress:
        now = utcnow()

        def body(reader, writer) -> ResourceProgress:
            enrollment = load_enrollment(reader, learner_id, course_id)
            resource = self.tracker.track_resource(enrollment, lesson_id, resource_id, now=now)
            writer.set(ENROLLMENTS, enrollment.id, dump(enrollment))
            return resource

        return self.store.with_transaction(body)

    def add_note(self, learner_id: str, course_id: str, lesson_id: str, text: str) -> Note:
        if not text or not text.strip():
            raise InvalidInput("Note text is required")
        note = Note(lesson_id=lesson_id, text=text.strip())

        def body(reader, writer) -> Note:
            enrollment = load_enrollment(reader, learner_id, course_id)
            if enrollment.lesson(lesson_id) is None:
                raise NotFound("Lesson progress", lesson_id)
            enrollment.notes = [*enrollment.notes, note]
            writer.set(ENROLLMENTS, enrollment.id, dump(enrollment))
            return note

        return self.store.with_transaction(body)

    def get_notes(self, learner_id: str, course_id: str, lesson_id: Optional[str] = None) -> List[Note]:
        notes = self.get_enrollment(learner_id, course_id).notes
        return [note for note in notes if lesson_id is None or note.lesson_id == lesson_id]

    def cancel_enrollment(self, learner_id: str, course_id: str) -> Enrollment:
        """Remove an enrollment and roll back the counters that enrolling bumped."""
        key = enrollment_id(require_id(learner_id, "learner_id"), require_id(course_id, "course_id"))

        def body(reader, writer) -> Enrollment:
            enrollment = load_enrollment(reader, learner_id, course_id)
            course_data = reader.get(COURSES, course_id)
            user_data = reader.get(USERS, learner_id)
            stats = reader.get(USER_STATS, learner_id)

            writer.delete(ENROLLMENTS, key)
            if course_data is not None:
                count = int(course_data.get("enrollment_count") or 0)
                writer.update(COURSES, course_id, {"enrollment_count": max(0, count - 1)})
            if user_data is not None:
                user = user_from_document({**user_data, "id": learner_id})
                writer.update(
                    USERS,
                    learner_id,
                    {"enrolled_courses": _replace_course_entry(user.enrolled_courses, course_id, None)},
                )
            if stats is not None:
                enrolled = int(stats.get("courses_enrolled", 0))
                writer.update(USER_STATS, learner_id, {"courses_enrolled": max(0, enrolled - 1)})
            return enrollment

        enrollment = self.store.with_transaction(body)
        if self.legacy.mirror_enabled:
            try:
                self.store.delete(LEGACY_ENROLLMENTS, key)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to remove legacy enrollment %s: %s", key, exc)
        logger.info("Cancelled enrollment %s", key)
        return enrollment

    def handle_course_completion(self, learner_id: str, course_id: str) -> EnrollmentUpdate:
        """Run the completion gate explicitly; safe to call repeatedly."""
        now = utcnow()

        def body(reader, writer):
            course = load_course(reader, course_id)
            enrollment = load_enrollment(reader, learner_id, course_id)
            user_data = reader.get(USERS, learner_id)
            summary = aggregate_progress(enrollment.lesson_progress)
            completion = self.complete_if_ready(enrollment, course, now)
            if completion.newly_completed:
                self.stage_enrollment(writer, enrollment, user_data)
            return enrollment, summary, completion

        enrollment, summary, completion = self.store.with_transaction(body)
        return self.after_commit(enrollment, summary, completion)

    def course_stats(self, learner_id: str) -> LearnerCourseStats:
        return learner_course_stats(self.get_learner_enrollments(learner_id))

    def mirror_legacy(self, enrollment: Enrollment) -> bool:
        """Copy an enrollment summary to the legacy collection. Failures are logged only."""
        if not self.legacy.mirror_enabled:
            return False
        try:
            self.store.set(
                LEGACY_ENROLLMENTS,
                enrollment.id,
                {
                    "user_id": enrollment.learner_id,
                    "course_id": enrollment.course_id,
                    "course_title": enrollment.course_title,
                    "progress": enrollment.progress,
                    "completed_lessons": enrollment.completed_lessons,
                    "total_lessons": enrollment.total_lessons,
                    "is_completed": enrollment.is_completed,
                    "updated_at": utcnow().isoformat(),
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Legacy mirror failed for %s: %s", enrollment.id, exc)
            return False
        return True
