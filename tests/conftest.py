"""Shared fixtures: an in-memory system and a small seeded course."""

from __future__ import annotations

import random

import pytest

from lms_core.config.schema import Settings, StorageConfig
from lms_core.storage import MemoryDocumentStore
from lms_core.system import LMSSystem


def course_payload(with_exam: bool = False, require_lessons: bool = False) -> dict:
    """Two lessons; the first one carries a two-question quiz."""
    payload = {
        "id": "course-1",
        "title": "Intro to Physics",
        "description": "Forces and motion",
        "category_id": "science",
        "instructor_id": "instructor-1",
        "lessons": [
            {
                "id": "lesson-1",
                "title": "Newton's laws",
                "resources": [{"id": "res-1", "title": "Slides", "url": "https://example.org/slides.pdf"}],
                "quiz": {
                    "id": "quiz-1",
                    "title": "Newton quiz",
                    "passing_score": 50,
                    "questions": [
                        {
                            "id": "q1",
                            "text": "Unit of force?",
                            "options": [{"id": "a", "text": "Joule"}, {"id": "b", "text": "Newton"}],
                            "correct_answer": "b",
                        },
                        {
                            "id": "q2",
                            "type": "true-false",
                            "text": "F = ma",
                            "correct_answer": True,
                        },
                    ],
                },
            },
            {"id": "lesson-2", "title": "Energy"},
        ],
    }
    if with_exam:
        payload["final_exam"] = {
            "id": "exam-1",
            "title": "Final",
            "passing_score": 100,
            "require_all_lessons_completed": require_lessons,
            "questions": [
                {"id": "e1", "type": "text", "text": "SI unit of energy", "correct_answers": ["joule"]},
            ],
        }
    return payload


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def system(store):
    settings = Settings(storage=StorageConfig(backend="memory"))
    return LMSSystem(settings, store=store, rng=random.Random(7))


@pytest.fixture
def learner(system):
    return system.users.create_user(
        {"id": "learner-1", "FirstName": "Ada", "LastName": "Lovelace", "Email": "ada@example.org"}
    )


@pytest.fixture
def course(system):
    return system.courses.create_course(course_payload())


@pytest.fixture
def enrolled(system, learner, course):
    return system.enrollments.enroll(learner.id, course.id).enrollment
