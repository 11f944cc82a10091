from .completion import CompletionEvent, CompletionResult, attempt_completion, can_complete
from .grading import QuestionGrade, grade_question, score_attempt
from .models import Attempt, Course, Enrollment, Lesson, LessonProgress
from .progress import ProgressSummary, ProgressTracker, aggregate_progress
from .questions import Exam, Quiz, parse_assessment

__all__ = [
    "Attempt",
    "CompletionEvent",
    "CompletionResult",
    "Course",
    "Enrollment",
    "Exam",
    "Lesson",
    "LessonProgress",
    "ProgressSummary",
    "ProgressTracker",
    "QuestionGrade",
    "Quiz",
    "aggregate_progress",
    "attempt_completion",
    "can_complete",
    "grade_question",
    "parse_assessment",
    "score_attempt",
]
