"""Question grading and attempt scoring.

Everything here is pure: no I/O, no clock reads unless the caller omits
``now``. Retrying a transaction that calls :func:`score_attempt` is therefore
safe until the surrounding write commits.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Set
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

from lms_core.errors import AttemptLimitExceeded, InvalidInput
from lms_core.learning.models import Attempt, QuestionResult, utcnow
from lms_core.learning.questions import (
    Assessment,
    BaseQuestion,
    MatchingQuestion,
    MultipleAnswerQuestion,
    MultipleChoiceQuestion,
    TextQuestion,
    TrueFalseQuestion,
)

logger = logging.getLogger(__name__)


class QuestionGrade(NamedTuple):
    is_correct: bool
    points_earned: int


def percentage(part: int, whole: int) -> int:
    """``part / whole * 100`` rounded half-up; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    # integer form of floor(part * 100 / whole + 0.5)
    return (part * 200 + whole) // (2 * whole)


def _grade_multiple_choice(question: MultipleChoiceQuestion, answer: Any) -> bool:
    return isinstance(answer, str) and answer == question.correct_answer


def _grade_true_false(question: TrueFalseQuestion, answer: Any) -> bool:
    return isinstance(answer, bool) and answer == question.correct_answer


def _grade_multiple_answer(question: MultipleAnswerQuestion, answer: Any) -> bool:
    if not isinstance(answer, (list, tuple, Set)):
        return False
    if not all(isinstance(item, str) for item in answer):
        return False
    return set(answer) == set(question.correct_answers)


def _grade_text(question: TextQuestion, answer: Any) -> bool:
    if not isinstance(answer, str):
        return False
    if question.case_sensitive:
        return answer in question.correct_answers
    lowered = answer.lower()
    return any(accepted.lower() == lowered for accepted in question.correct_answers)


def _grade_matching(question: MatchingQuestion, answer: Any) -> bool:
    if not isinstance(answer, Mapping):
        return False
    expected = {pair.id: pair.id for pair in question.pairs}
    return dict(answer) == expected


_GRADERS: Dict[str, Callable[[Any, Any], bool]] = {
    "multiple-choice": _grade_multiple_choice,
    "true-false": _grade_true_false,
    "multiple-answer": _grade_multiple_answer,
    "text": _grade_text,
    "matching": _grade_matching,
}


def grade_question(question: BaseQuestion, answer: Any) -> QuestionGrade:
    """Grade one answer. Missing answers are incorrect; no partial credit."""
    if answer is None:
        return QuestionGrade(False, 0)
    grader = _GRADERS[question.type]
    is_correct = grader(question, answer)
    return QuestionGrade(is_correct, question.points if is_correct else 0)


def check_attempt_limit(assessment: Assessment, previous_attempts: Sequence[Attempt]) -> None:
    """Raise `AttemptLimitExceeded` when no attempts remain."""
    allowed = assessment.attempts_allowed
    if allowed > 0 and len(previous_attempts) >= allowed:
        raise AttemptLimitExceeded(assessment.kind, allowed)


def attempts_remaining(assessment: Assessment, previous_attempts: Sequence[Attempt]) -> Optional[int]:
    """Remaining attempts, or None when unlimited."""
    if assessment.attempts_allowed == 0:
        return None
    return max(0, assessment.attempts_allowed - len(previous_attempts))


def score_attempt(
    assessment: Assessment,
    answers: Mapping[str, Any],
    *,
    previous_attempts: Sequence[Attempt] = (),
    learner_id: Optional[str] = None,
    now: Optional[datetime] = None,
    attempt_id: Optional[str] = None,
) -> Attempt:
    """
    Grade every question of ``assessment`` and build the resulting `Attempt`.

    Parameters
    ----------
    assessment : Assessment
        Validated quiz or exam. Questions are graded in their stored order.
    answers : Mapping[str, Any]
        Question id to submitted answer. Unknown ids are ignored, missing ids
        count as unanswered.
    previous_attempts : Sequence[Attempt]
        The learner's existing history for this assessment. Determines the
        attempt number and enforces ``attempts_allowed``.

    Raises
    ------
    AttemptLimitExceeded
        Raised before any grading when the learner has no attempts left.
    InvalidInput
        ``answers`` is not a mapping of question id to answer.
    """
    if not isinstance(answers, Mapping):
        raise InvalidInput("Answers must map question ids to answers")
    check_attempt_limit(assessment, previous_attempts)

    results: List[QuestionResult] = []
    total_points = 0
    earned_points = 0
    for question in assessment.questions:
        submitted = answers.get(question.id)
        grade = grade_question(question, submitted)
        total_points += question.points
        earned_points += grade.points_earned
        results.append(
            QuestionResult(
                question_id=question.id,
                correct=grade.is_correct,
                points=grade.points_earned,
                possible_points=question.points,
                user_answer=_as_stored_answer(submitted),
            )
        )

    score = percentage(earned_points, total_points)
    attempt_fields: Dict[str, Any] = {
        "assessment_id": assessment.id,
        "assessment_kind": assessment.kind,
        "learner_id": learner_id,
        "timestamp": now or utcnow(),
        "questions": tuple(results),
        "total_points": total_points,
        "earned_points": earned_points,
        "score": score,
        "passed": score >= assessment.passing_score,
        "attempt_number": len(previous_attempts) + 1,
    }
    if attempt_id:
        attempt_fields["id"] = attempt_id
    attempt = Attempt(**attempt_fields)
    logger.debug(
        "Scored %s %s: %s/%s points (%s%%), passed=%s",
        assessment.kind,
        assessment.id,
        earned_points,
        total_points,
        score,
        attempt.passed,
    )
    return attempt


def _as_stored_answer(answer: Any) -> Any:
    if isinstance(answer, Set):
        return sorted(answer, key=str)
    return answer
