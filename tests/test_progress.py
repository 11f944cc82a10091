"""Tests for progress aggregation and the ProgressTracker."""

from __future__ import annotations

import itertools

import pytest

from lms_core.config.schema import ProgressConfig
from lms_core.errors import NotFound
from lms_core.learning.models import Attempt, Course, Enrollment, LessonProgress
from lms_core.learning.progress import ProgressTracker, aggregate_progress


def _lessons(completed, quizzes):
    """``completed`` and ``quizzes`` are per-lesson; quizzes entries are None (no quiz) or a bool."""
    return [
        LessonProgress(
            lesson_id=f"l{index}",
            completed=done,
            quiz_id=None if quiz is None else f"q{index}",
            quiz_completed=bool(quiz),
        )
        for index, (done, quiz) in enumerate(zip(completed, quizzes))
    ]


@pytest.fixture
def course():
    return Course.model_validate(
        {
            "id": "c",
            "title": "Course",
            "lessons": [
                {
                    "id": "l1",
                    "resources": [{"id": "r1"}],
                    "quiz": {"id": "qz", "questions": [{"type": "true-false", "correct_answer": True}]},
                },
                {"id": "l2"},
            ],
        }
    )


@pytest.fixture
def enrollment(course):
    enrollment = Enrollment(
        id="u_c",
        learner_id="u",
        course_id="c",
        lesson_progress=[LessonProgress.for_lesson(lesson) for lesson in course.lessons],
    )
    ProgressTracker().refresh(enrollment)
    return enrollment


def test_lessons_and_quizzes_count_as_units():
    lessons = _lessons([True, True, True, False], [True, False, None, None])
    summary = aggregate_progress(lessons)
    assert summary.total_units == 6
    assert summary.completed_units == 4
    assert summary.overall_progress == 67
    assert summary.completed_lessons == 3
    assert summary.is_completed is False


def test_empty_course_has_zero_progress():
    summary = aggregate_progress([])
    assert summary.overall_progress == 0
    assert summary.is_completed is False


def test_progress_is_monotonic_in_completed_units():
    # units: lesson 0, quiz 0, lesson 1
    states = list(itertools.product([False, True], repeat=3))
    summaries = {
        state: aggregate_progress(_lessons([state[0], state[2]], [state[1], None])) for state in states
    }
    for smaller, larger in itertools.product(states, repeat=2):
        if all(b or not a for a, b in zip(smaller, larger)):
            assert summaries[smaller].overall_progress <= summaries[larger].overall_progress
            if summaries[smaller].is_completed:
                assert summaries[larger].is_completed
    assert summaries[(True, True, True)].is_completed
    assert not summaries[(True, False, True)].is_completed


def test_refresh_sets_derived_fields(enrollment):
    assert enrollment.total_lessons == 2
    assert enrollment.progress == 0
    assert enrollment.current_lesson_id == "l1"


def test_update_lesson_completion_is_sticky(enrollment):
    tracker = ProgressTracker(ProgressConfig(lesson_time_increment_seconds=30))
    summary = tracker.update_lesson(enrollment, "l1", progress_percent=100)
    assert summary.completed_lessons == 1
    assert summary.overall_progress == 33
    tracker.update_lesson(enrollment, "l1", progress_percent=20)
    lesson = enrollment.lesson("l1")
    assert lesson.completed is True
    assert lesson.progress == 100
    assert lesson.time_spent == 60
    assert enrollment.current_lesson_id == "l2"


def test_update_lesson_clamps_percentage(enrollment):
    tracker = ProgressTracker()
    tracker.update_lesson(enrollment, "l2", progress_percent=-5, time_spent=0)
    assert enrollment.lesson("l2").progress == 0
    tracker.update_lesson(enrollment, "l2", progress_percent=250, time_spent=0)
    assert enrollment.lesson("l2").completed is True


def test_unknown_lesson_raises_not_found(enrollment):
    with pytest.raises(NotFound):
        ProgressTracker().update_lesson(enrollment, "missing", completed=True)


def test_quiz_pass_is_sticky_and_best_score_kept(enrollment):
    tracker = ProgressTracker()
    tracker.record_quiz_attempt(enrollment, "l1", Attempt(assessment_id="qz", score=100, passed=True))
    tracker.record_quiz_attempt(enrollment, "l1", Attempt(assessment_id="qz", score=0, passed=False))
    lesson = enrollment.lesson("l1")
    assert lesson.quiz_completed is True
    assert lesson.quiz_best_score == 100
    assert len(lesson.quiz_attempts) == 2


def test_track_resource_counts_downloads(enrollment):
    tracker = ProgressTracker()
    tracker.track_resource(enrollment, "l1", "r1")
    resource = tracker.track_resource(enrollment, "l1", "r1")
    assert resource.accessed is True
    assert resource.download_count == 2
    with pytest.raises(NotFound):
        tracker.track_resource(enrollment, "l1", "nope")


def test_sync_with_course_keeps_existing_and_adds_new(enrollment, course):
    tracker = ProgressTracker()
    tracker.update_lesson(enrollment, "l1", completed=True)
    changed = course.model_copy(
        update={"lessons": [course.lessons[0], *Course.model_validate({"lessons": [{"id": "l3"}]}).lessons]}
    )
    summary = tracker.sync_with_course(enrollment, changed)
    assert [item.lesson_id for item in enrollment.lesson_progress] == ["l1", "l3"]
    assert enrollment.lesson("l1").completed is True
    assert enrollment.total_lessons == 2
    assert summary.total_units == 3
