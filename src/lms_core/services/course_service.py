from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import ValidationError

from lms_core.config.schema import GradingConfig
from lms_core.errors import InvalidInput, NotFound
from lms_core.learning.models import Course, Enrollment, utcnow
from lms_core.learning.progress import ProgressTracker
from lms_core.learning.questions import Assessment, Exam, Quiz, parse_assessment
from lms_core.services.common import dump, load_course, require_id
from lms_core.storage import DocumentStore
from lms_core.storage.collection_names import COURSES, ENROLLMENTS, EXAM_ATTEMPTS, QUIZ_ATTEMPTS

logger = logging.getLogger(__name__)


class CourseService:
    """Course catalog CRUD plus authoring of lesson quizzes and final exams.

    Any change to a course's lessons, quizzes or exam is pushed to existing
    enrollments so their lesson progress lines up with the new structure.
    """

    def __init__(
        self,
        store: DocumentStore,
        tracker: Optional[ProgressTracker] = None,
        grading: Optional[GradingConfig] = None,
    ):
        self.store = store
        self.tracker = tracker or ProgressTracker()
        self.grading = grading or GradingConfig()

    def _validate(self, payload: Mapping[str, Any]) -> Course:
        try:
            return Course.model_validate(payload)
        except ValidationError as exc:
            raise InvalidInput(f"Invalid course definition: {exc}") from exc

    def list_courses(self) -> List[Course]:
        return [Course.model_validate(doc) for doc in self.store.list(COURSES)]

    def get_course(self, course_id: str) -> Course:
        return load_course(self.store, course_id)

    def create_course(self, data: Mapping[str, Any]) -> Course:
        now = utcnow()
        course = self._validate({**data, "created_at": now, "updated_at": now, "enrollment_count": 0})
        self.store.set(COURSES, course.id, dump(course))
        logger.info("Created course %s (%s)", course.id, course.title)
        return course

    def update_course(self, course_id: str, changes: Mapping[str, Any]) -> Course:
        """Apply top-level field changes; lesson changes resync every enrollment."""
        changes = {key: value for key, value in changes.items() if key not in ("id", "enrollment_count")}

        def body(reader, writer) -> Course:
            current = load_course(reader, course_id)
            course = self._validate({**dump(current), **changes, "updated_at": utcnow()})
            writer.set(COURSES, course_id, dump(course))
            return course

        course = self.store.with_transaction(body)
        if "lessons" in changes or "final_exam" in changes:
            self.sync_enrollments(course)
        return course

    def delete_course(self, course_id: str) -> int:
        """Delete a course with its enrollments and attempts. Returns the number of enrollments removed."""
        self.get_course(course_id)
        enrollments = self.store.query(ENROLLMENTS, where={"course_id": course_id})
        for doc in enrollments:
            self.store.delete(ENROLLMENTS, doc["id"])
        self.store.delete(COURSES, course_id)
        for collection in (QUIZ_ATTEMPTS, EXAM_ATTEMPTS):
            try:
                for doc in self.store.query(collection, where={"course_id": course_id}):
                    self.store.delete(collection, doc["id"])
            except Exception as exc:  # noqa: BLE001
                logger.warning("Attempt cleanup in %s failed for course %s: %s", collection, course_id, exc)
        logger.info("Deleted course %s and %d enrollments", course_id, len(enrollments))
        return len(enrollments)

    def search_courses(self, term: str) -> List[Course]:
        needle = term.strip().lower()
        return [
            course
            for course in self.list_courses()
            if needle in course.title.lower() or needle in course.description.lower()
        ]

    def courses_by_category(self, category_id: str, limit: int = 20) -> List[Course]:
        docs = self.store.query(COURSES, where={"category_id": category_id}, limit=limit)
        return [Course.model_validate(doc) for doc in docs]

    def courses_by_instructor(self, instructor_id: str, limit: int = 20) -> List[Course]:
        docs = self.store.query(COURSES, where={"instructor_id": instructor_id}, limit=limit)
        return [Course.model_validate(doc) for doc in docs]

    def popular_courses(self, limit: int = 5) -> List[Course]:
        docs = self.store.query(COURSES, order_by="enrollment_count", descending=True, limit=limit)
        return [Course.model_validate(doc) for doc in docs]

    def sync_enrollments(self, course: Course) -> int:
        """Realign every enrollment of ``course`` with its current lessons. Returns how many were updated."""
        synced = 0
        for doc in self.store.query(ENROLLMENTS, where={"course_id": course.id}):

            def body(reader, writer, enrollment_key=doc["id"]) -> bool:
                data = reader.get(ENROLLMENTS, enrollment_key)
                if data is None:
                    return False
                enrollment = Enrollment.model_validate(data)
                self.tracker.sync_with_course(enrollment, course)
                writer.set(ENROLLMENTS, enrollment_key, dump(enrollment))
                return True

            if self.store.with_transaction(body):
                synced += 1
        logger.info("Synced %d enrollments with course %s", synced, course.id)
        return synced

    def _assessment_payload(
        self,
        model: Type[Assessment],
        data: Mapping[str, Any],
        existing: Optional[Assessment],
        default_title: str,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(data)
        if existing is not None:
            payload["id"] = existing.id
        payload.setdefault("title", default_title)
        payload.setdefault("passing_score", self.grading.default_passing_score)
        if model is Exam:
            payload.setdefault("time_limit", self.grading.exam_time_limit_minutes)
            payload.setdefault("attempts_allowed", self.grading.exam_attempts_allowed)
            payload.setdefault("require_all_lessons_completed", self.grading.exam_require_all_lessons_completed)
        else:
            payload.setdefault("time_limit", self.grading.default_time_limit_minutes)
        questions = payload.get("questions")
        if isinstance(questions, list):
            payload["questions"] = [
                {"points": self.grading.default_points, **question} if isinstance(question, Mapping) else question
                for question in questions
            ]
        payload["updated_at"] = utcnow()
        return payload

    def _save_assessment(
        self,
        course_id: str,
        model: Type[Assessment],
        data: Mapping[str, Any],
        lesson_id: Optional[str] = None,
    ) -> Assessment:
        require_id(course_id, "course_id")

        def body(reader, writer) -> tuple[Course, Assessment]:
            course = load_course(reader, course_id)
            if lesson_id is not None:
                lesson = course.lesson(lesson_id)
                if lesson is None:
                    raise NotFound("Lesson", lesson_id)
                payload = self._assessment_payload(model, data, lesson.quiz, f"{lesson.title} Quiz")
                assessment = parse_assessment(model, payload)
                lesson.quiz = assessment
            else:
                payload = self._assessment_payload(model, data, course.final_exam, f"{course.title} Final Exam")
                assessment = parse_assessment(model, payload)
                course.final_exam = assessment
            course.updated_at = utcnow()
            writer.set(COURSES, course_id, dump(course))
            return course, assessment

        course, assessment = self.store.with_transaction(body)
        logger.info("Saved %s %s on course %s", assessment.kind, assessment.id, course_id)
        self.sync_enrollments(course)
        return assessment

    def create_or_update_lesson_quiz(self, course_id: str, lesson_id: str, data: Mapping[str, Any]) -> Quiz:
        """Attach or replace a lesson's quiz. An existing quiz keeps its id."""
        return self._save_assessment(course_id, Quiz, data, lesson_id=require_id(lesson_id, "lesson_id"))

    def create_or_update_final_exam(self, course_id: str, data: Mapping[str, Any]) -> Exam:
        """Attach or replace the course's final exam. An existing exam keeps its id."""
        return self._save_assessment(course_id, Exam, data)
