from __future__ import annotations

from typing import List, Sequence

from pydantic import BaseModel, Field

from lms_core.learning.grading import percentage
from lms_core.learning.models import Attempt, Enrollment
from lms_core.learning.questions import Assessment


class QuestionAnalytics(BaseModel):
    """How often learners got one question right."""

    question_id: str
    text: str
    type: str
    total_attempted: int
    total_correct: int
    correct_rate: int


class AssessmentAnalytics(BaseModel):
    """Aggregate results of all attempts against one quiz or exam."""

    total_attempts: int = 0
    average_score: int = 0
    pass_rate: int = 0
    question_analytics: List[QuestionAnalytics] = Field(default_factory=list)


class LearnerCourseStats(BaseModel):
    """Roll-up of one learner's enrollments."""

    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    total_lessons: int = 0
    completed_lessons: int = 0
    average_progress: int = 0
    time_spent: int = 0
    quizzes_completed: int = 0
    quiz_attempts: int = 0
    avg_quiz_score: int = 0
    exams_completed: int = 0
    exam_attempts: int = 0
    avg_exam_score: int = 0


def _mean(total: int, count: int) -> int:
    """Half-up rounded ``total / count``, 0 for an empty set."""
    return percentage(total, count * 100) if count else 0


def assessment_analytics(assessment: Assessment, attempts: Sequence[Attempt]) -> AssessmentAnalytics:
    """Summarize attempts; questions are sorted hardest (lowest correct rate) first."""
    if not attempts:
        return AssessmentAnalytics()

    total = len(attempts)
    passed = sum(1 for attempt in attempts if attempt.passed)
    questions: List[QuestionAnalytics] = []
    for question in assessment.questions:
        results = [
            result
            for attempt in attempts
            for result in attempt.questions
            if result.question_id == question.id
        ]
        correct = sum(1 for result in results if result.correct)
        questions.append(
            QuestionAnalytics(
                question_id=question.id,
                text=question.text,
                type=question.type,
                total_attempted=len(results),
                total_correct=correct,
                correct_rate=percentage(correct, len(results)),
            )
        )
    questions.sort(key=lambda item: item.correct_rate)
    return AssessmentAnalytics(
        total_attempts=total,
        average_score=_mean(sum(attempt.score for attempt in attempts), total),
        pass_rate=percentage(passed, total),
        question_analytics=questions,
    )


def learner_course_stats(enrollments: Sequence[Enrollment]) -> LearnerCourseStats:
    """Aggregate progress, time on task and best scores across a learner's courses."""
    stats = LearnerCourseStats(total_courses=len(enrollments))
    if not enrollments:
        return stats

    total_progress = 0
    quiz_best_total = 0
    exam_best_total = 0
    for enrollment in enrollments:
        if enrollment.is_completed:
            stats.completed_courses += 1
        stats.total_lessons += enrollment.total_lessons
        stats.completed_lessons += enrollment.completed_lessons
        total_progress += enrollment.progress
        for lesson in enrollment.lesson_progress:
            stats.time_spent += lesson.time_spent
            if lesson.quiz_completed:
                stats.quizzes_completed += 1
            if lesson.quiz_attempts:
                stats.quiz_attempts += len(lesson.quiz_attempts)
                quiz_best_total += max(attempt.score for attempt in lesson.quiz_attempts)
        if enrollment.exam_completed:
            stats.exams_completed += 1
        if enrollment.exam_attempts:
            stats.exam_attempts += len(enrollment.exam_attempts)
            exam_best_total += max(attempt.score for attempt in enrollment.exam_attempts)

    stats.in_progress_courses = stats.total_courses - stats.completed_courses
    stats.average_progress = _mean(total_progress, stats.total_courses)
    stats.avg_quiz_score = _mean(quiz_best_total, stats.quizzes_completed)
    stats.avg_exam_score = _mean(exam_best_total, stats.exams_completed)
    return stats
