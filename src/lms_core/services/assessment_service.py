"""Service layer for lesson quizzes and final exams.

Submissions are graded inside the same transaction that appends the attempt
to the enrollment, so the attempt limit is checked against the history that
is actually committed.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from lms_core.errors import NotFound, PermissionDenied
from lms_core.learning.analytics import AssessmentAnalytics, assessment_analytics
from lms_core.learning.completion import completion_blocker, ensure_exam_available
from lms_core.learning.grading import score_attempt
from lms_core.learning.models import Attempt, Course, utcnow
from lms_core.learning.questions import Assessment, Exam, Quiz
from lms_core.learning.quiz_utils import learner_view, review_attempt
from lms_core.services.common import dump, load_course, load_enrollment, require_id
from lms_core.services.enrollment_service import EnrollmentService, EnrollmentUpdate
from lms_core.storage import DocumentStore
from lms_core.storage.collection_names import COURSES, EXAM_ATTEMPTS, QUIZ_ATTEMPTS, USERS

logger = logging.getLogger(__name__)


class AssessmentAvailability(BaseModel):
    """What a learner may see of a quiz or exam before starting it."""

    exists: bool
    is_enabled: bool = False
    can_attempt: bool = False
    message: str = ""
    assessment: Optional[Dict[str, Any]] = None


class SubmissionResult(BaseModel):
    attempt: Attempt
    passing_score: int
    show_feedback: bool
    question_results: List[Dict[str, Any]] = Field(default_factory=list)
    update: EnrollmentUpdate


def _lesson_quiz(course: Course, lesson_id: str) -> Quiz:
    lesson = course.lesson(lesson_id)
    if lesson is None:
        raise NotFound("Lesson", lesson_id)
    if lesson.quiz is None:
        raise NotFound("Quiz", f"for lesson {lesson_id}")
    return lesson.quiz


def _final_exam(course: Course) -> Exam:
    if course.final_exam is None:
        raise NotFound("Final exam", f"for course {course.id}")
    return course.final_exam


def _newest_first(docs: List[Dict[str, Any]]) -> List[Attempt]:
    attempts = [Attempt.model_validate(doc) for doc in docs]
    attempts.sort(key=lambda attempt: (attempt.timestamp, attempt.attempt_number), reverse=True)
    return attempts


class AssessmentService:
    """Learner-facing quiz/exam views, submissions, history and analytics."""

    def __init__(
        self,
        store: DocumentStore,
        enrollments: EnrollmentService,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.enrollments = enrollments
        self.rng = rng or random.Random()

    def get_lesson_quiz(self, learner_id: str, course_id: str, lesson_id: str) -> AssessmentAvailability:
        course = load_course(self.store, course_id)
        lesson = course.lesson(require_id(lesson_id, "lesson_id"))
        if lesson is None:
            raise NotFound("Lesson", lesson_id)
        if lesson.quiz is None:
            return AssessmentAvailability(exists=False, message="No quiz available for this lesson")

        enrollment = load_enrollment(self.store, learner_id, course_id)
        progress = enrollment.lesson(lesson_id)
        attempts = progress.quiz_attempts if progress else []
        view = learner_view(
            lesson.quiz,
            attempts,
            completed=bool(progress and progress.quiz_completed),
            best_score=progress.quiz_best_score if progress else 0,
            rng=self.rng,
        )
        remaining = view["attempts_remaining"]
        return AssessmentAvailability(
            exists=True,
            is_enabled=lesson.quiz.is_enabled,
            can_attempt=remaining is None or remaining > 0,
            message="" if lesson.quiz.is_enabled else "This quiz is currently disabled",
            assessment=view,
        )

    def get_final_exam(self, learner_id: str, course_id: str) -> AssessmentAvailability:
        course = load_course(self.store, course_id)
        if course.final_exam is None:
            return AssessmentAvailability(exists=False, message="No final exam available for this course")
        exam = course.final_exam
        if not exam.is_enabled:
            return AssessmentAvailability(exists=True, message="The final exam is currently disabled")

        enrollment = load_enrollment(self.store, learner_id, course_id)
        view = learner_view(
            exam,
            enrollment.exam_attempts,
            completed=enrollment.exam_completed,
            best_score=enrollment.exam_best_score,
            rng=self.rng,
        )
        message = ""
        can_attempt = view["attempts_remaining"] is None or view["attempts_remaining"] > 0
        if exam.require_all_lessons_completed and not enrollment.all_lessons_completed:
            message = "You need to complete all lessons before taking the final exam"
            can_attempt = False
        return AssessmentAvailability(
            exists=True,
            is_enabled=True,
            can_attempt=can_attempt,
            message=message,
            assessment=view,
        )

    def _result(self, attempt: Attempt, assessment: Assessment, update: EnrollmentUpdate) -> SubmissionResult:
        return SubmissionResult(
            attempt=attempt,
            passing_score=assessment.passing_score,
            show_feedback=assessment.show_feedback,
            question_results=review_attempt(attempt, assessment) if assessment.show_feedback else [],
            update=update,
        )

    def submit_quiz_attempt(
        self,
        learner_id: str,
        course_id: str,
        lesson_id: str,
        quiz_id: str,
        answers: Mapping[str, Any],
        time_spent: int = 0,
    ) -> SubmissionResult:
        """
        Grade a lesson quiz submission and record it on the enrollment.

        Raises
        ------
        NotFound
            Unknown course, lesson, quiz or enrollment, or ``quiz_id`` does not
            match the lesson's current quiz.
        AttemptLimitExceeded
            Nothing is recorded.
        """
        require_id(quiz_id, "quiz_id")
        now = utcnow()

        def body(reader, writer):
            course = load_course(reader, course_id)
            enrollment = load_enrollment(reader, learner_id, course_id)
            user_data = reader.get(USERS, learner_id)
            quiz = _lesson_quiz(course, lesson_id)
            if quiz.id != quiz_id:
                raise NotFound("Quiz", quiz_id)
            progress = enrollment.lesson(lesson_id)
            if progress is None:
                raise NotFound("Lesson progress", lesson_id)

            attempt = score_attempt(
                quiz,
                answers,
                previous_attempts=progress.quiz_attempts,
                learner_id=learner_id,
                now=now,
            ).model_copy(update={"time_spent": time_spent})
            summary = self.enrollments.tracker.record_quiz_attempt(enrollment, lesson_id, attempt, now=now)
            completion = self.enrollments.complete_if_ready(enrollment, course, now)
            self.enrollments.stage_enrollment(writer, enrollment, user_data)
            writer.set(
                QUIZ_ATTEMPTS,
                attempt.id,
                {**dump(attempt), "course_id": course_id, "lesson_id": lesson_id},
            )
            return quiz, attempt, enrollment, summary, completion

        quiz, attempt, enrollment, summary, completion = self.store.with_transaction(body)
        logger.info(
            "Quiz %s attempt %d by %s scored %d%%",
            quiz_id,
            attempt.attempt_number,
            learner_id,
            attempt.score,
        )
        return self._result(attempt, quiz, self.enrollments.after_commit(enrollment, summary, completion))

    def submit_exam_attempt(
        self,
        learner_id: str,
        course_id: str,
        exam_id: str,
        answers: Mapping[str, Any],
        time_spent: int = 0,
    ) -> SubmissionResult:
        """Grade a final exam submission; a pass may complete the course."""
        require_id(exam_id, "exam_id")
        now = utcnow()

        def body(reader, writer):
            course = load_course(reader, course_id)
            enrollment = load_enrollment(reader, learner_id, course_id)
            user_data = reader.get(USERS, learner_id)
            exam = _final_exam(course)
            if exam.id != exam_id:
                raise NotFound("Final exam", exam_id)
            ensure_exam_available(enrollment, exam)

            attempt = score_attempt(
                exam,
                answers,
                previous_attempts=enrollment.exam_attempts,
                learner_id=learner_id,
                now=now,
            ).model_copy(update={"time_spent": time_spent})
            summary = self.enrollments.tracker.record_exam_attempt(enrollment, attempt, now=now)
            completion = self.enrollments.complete_if_ready(enrollment, course, now)
            self.enrollments.stage_enrollment(writer, enrollment, user_data)
            writer.set(EXAM_ATTEMPTS, attempt.id, {**dump(attempt), "course_id": course_id})
            return exam, attempt, enrollment, summary, completion

        exam, attempt, enrollment, summary, completion = self.store.with_transaction(body)
        logger.info(
            "Exam %s attempt %d by %s scored %d%%",
            exam_id,
            attempt.attempt_number,
            learner_id,
            attempt.score,
        )
        return self._result(attempt, exam, self.enrollments.after_commit(enrollment, summary, completion))

    def get_quiz_attempt_history(self, learner_id: str, course_id: str, lesson_id: str) -> List[Attempt]:
        """Newest attempt first."""
        docs = self.store.query(
            QUIZ_ATTEMPTS,
            where={"learner_id": learner_id, "course_id": course_id, "lesson_id": lesson_id},
        )
        return _newest_first(docs)

    def get_exam_attempt_history(self, learner_id: str, course_id: str) -> List[Attempt]:
        docs = self.store.query(EXAM_ATTEMPTS, where={"learner_id": learner_id, "course_id": course_id})
        return _newest_first(docs)

    def get_attempt(self, attempt_id: str, learner_id: str, kind: str = "quiz") -> Dict[str, Any]:
        """
        One attempt for its owner. Per-question detail includes prompts and
        answer keys only while the assessment allows review.
        """
        collection = QUIZ_ATTEMPTS if kind == "quiz" else EXAM_ATTEMPTS
        data = self.store.get(collection, require_id(attempt_id, "attempt_id"))
        if data is None:
            raise NotFound("Attempt", attempt_id)
        if data.get("learner_id") != learner_id:
            raise PermissionDenied("You do not have permission to view this attempt")

        attempt = Attempt.model_validate(data)
        assessment: Optional[Assessment] = None
        course_data = self.store.get(COURSES, data.get("course_id", ""))
        if course_data is not None:
            course = Course.model_validate(course_data)
            if kind == "quiz":
                lesson = course.lesson(data.get("lesson_id", ""))
                assessment = lesson.quiz if lesson else None
            else:
                assessment = course.final_exam
            if assessment is not None and assessment.id != attempt.assessment_id:
                assessment = None
        return {
            **dump(attempt),
            "course_id": data.get("course_id"),
            "lesson_id": data.get("lesson_id"),
            "allow_review": bool(assessment and assessment.allow_review),
            "questions": review_attempt(attempt, assessment),
        }

    def quiz_analytics(self, course_id: str, lesson_id: str) -> AssessmentAnalytics:
        quiz = _lesson_quiz(load_course(self.store, course_id), lesson_id)
        docs = self.store.query(QUIZ_ATTEMPTS, where={"course_id": course_id, "lesson_id": lesson_id})
        attempts = [Attempt.model_validate(doc) for doc in docs if doc.get("assessment_id") == quiz.id]
        return assessment_analytics(quiz, attempts)

    def exam_analytics(self, course_id: str) -> AssessmentAnalytics:
        exam = _final_exam(load_course(self.store, course_id))
        docs = self.store.query(EXAM_ATTEMPTS, where={"course_id": course_id})
        attempts = [Attempt.model_validate(doc) for doc in docs if doc.get("assessment_id") == exam.id]
        return assessment_analytics(exam, attempts)

    def completion_status(self, learner_id: str, course_id: str) -> Dict[str, Any]:
        """Whether the learner can finish the course now, and if not, why."""
        course = load_course(self.store, course_id)
        enrollment = load_enrollment(self.store, learner_id, course_id)
        reason = None if enrollment.is_completed else completion_blocker(enrollment, course)
        return {
            "is_completed": enrollment.is_completed,
            "can_complete": reason is None,
            "reason": reason,
            "certificate_id": enrollment.certificate_id,
        }
