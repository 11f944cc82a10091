"""Tests for question grading and attempt scoring."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from lms_core.errors import AttemptLimitExceeded, InvalidInput
from lms_core.learning.grading import grade_question, percentage, score_attempt
from lms_core.learning.questions import (
    MatchingQuestion,
    MultipleAnswerQuestion,
    MultipleChoiceQuestion,
    Quiz,
    TextQuestion,
    TrueFalseQuestion,
    parse_assessment,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def multiple_answer():
    return MultipleAnswerQuestion(
        id="ma",
        points=2,
        options=[{"id": "x"}, {"id": "y"}, {"id": "z"}],
        correct_answers=["x", "z"],
    )


@pytest.fixture
def mixed_quiz():
    return Quiz.model_validate(
        {
            "id": "quiz",
            "passing_score": 60,
            "questions": [
                {"id": "mc", "options": [{"id": "a"}, {"id": "b"}], "correct_answer": "a", "points": 1},
                {"id": "tf", "type": "true-false", "correct_answer": False, "points": 1},
                {"id": "tx", "type": "text", "correct_answers": ["Paris"], "points": 1},
            ],
        }
    )


def test_multiple_answer_is_order_independent(multiple_answer):
    assert grade_question(multiple_answer, ["z", "x"]) == (True, 2)
    assert grade_question(multiple_answer, {"x", "z"}).is_correct


def test_multiple_answer_requires_exact_set(multiple_answer):
    assert grade_question(multiple_answer, ["x"]) == (False, 0)
    assert grade_question(multiple_answer, ["x", "y", "z"]) == (False, 0)
    assert grade_question(multiple_answer, "x") == (False, 0)


def test_text_grading_is_case_insensitive_by_default():
    question = TextQuestion(correct_answers=["Paris"])
    assert grade_question(question, "paris").is_correct
    assert grade_question(question, "PARIS").is_correct
    assert not grade_question(question, "Lyon").is_correct


def test_text_grading_respects_case_sensitive_flag():
    question = TextQuestion(correct_answers=["Paris"], case_sensitive=True)
    assert grade_question(question, "Paris").is_correct
    assert not grade_question(question, "paris").is_correct


def test_true_false_requires_a_boolean():
    question = TrueFalseQuestion(correct_answer=True)
    assert grade_question(question, True).is_correct
    assert not grade_question(question, "true").is_correct
    assert not grade_question(question, 1).is_correct


def test_matching_requires_every_pair_mapped_to_itself():
    question = MatchingQuestion(
        pairs=[{"left": "H2O", "right": "water"}, {"left": "NaCl", "right": "salt"}]
    )
    assert [pair.id for pair in question.pairs] == ["pair-0", "pair-1"]
    assert grade_question(question, {"pair-0": "pair-0", "pair-1": "pair-1"}).is_correct
    assert not grade_question(question, {"pair-0": "pair-1", "pair-1": "pair-0"}).is_correct
    assert not grade_question(question, {"pair-0": "pair-0"}).is_correct


def test_missing_answer_scores_zero_without_raising():
    question = MultipleChoiceQuestion(options=[{"id": "a"}, {"id": "b"}], correct_answer="a")
    assert grade_question(question, None) == (False, 0)


def test_percentage_rounds_half_up():
    assert percentage(1, 2) == 50
    assert percentage(2, 3) == 67
    assert percentage(1, 8) == 13  # 12.5
    assert percentage(5, 0) == 0


def test_score_attempt_totals_and_pass(mixed_quiz):
    attempt = score_attempt(mixed_quiz, {"mc": "a", "tf": False, "tx": "lyon"}, now=FIXED_NOW)
    assert attempt.total_points == 3
    assert attempt.earned_points == 2
    assert attempt.score == 67
    assert attempt.passed is True
    assert attempt.attempt_number == 1
    assert [result.question_id for result in attempt.questions] == ["mc", "tf", "tx"]


def test_score_attempt_is_idempotent(mixed_quiz):
    answers = {"mc": "b", "tf": False, "tx": "Paris"}
    first = score_attempt(mixed_quiz, answers, now=FIXED_NOW, attempt_id="a1")
    second = score_attempt(mixed_quiz, answers, now=FIXED_NOW, attempt_id="a1")
    assert first == second


def test_zero_question_assessment_scores_zero():
    failing = Quiz(passing_score=70)
    lenient = Quiz(passing_score=0)
    assert score_attempt(failing, {}).score == 0
    assert score_attempt(failing, {}).passed is False
    assert score_attempt(lenient, {}).passed is True


def test_attempt_limit_is_checked_before_grading(mixed_quiz):
    limited = mixed_quiz.model_copy(update={"attempts_allowed": 2})
    first = score_attempt(limited, {})
    second = score_attempt(limited, {}, previous_attempts=[first])
    assert second.attempt_number == 2
    with pytest.raises(AttemptLimitExceeded) as excinfo:
        score_attempt(limited, {}, previous_attempts=[first, second])
    assert "attempts" in excinfo.value.reason


def test_answers_must_be_a_mapping(mixed_quiz):
    with pytest.raises(InvalidInput):
        score_attempt(mixed_quiz, ["a", True])


def test_parse_assessment_rejects_malformed_definitions():
    with pytest.raises(InvalidInput):
        parse_assessment(Quiz, {"questions": "not a list"})
    with pytest.raises(InvalidInput):
        parse_assessment(Quiz, {"questions": [{"options": [{"id": "a"}], "correct_answer": "a"}]})
    with pytest.raises(InvalidInput):
        parse_assessment(
            Quiz, {"questions": [{"options": [{"id": "a"}, {"id": "b"}], "correct_answer": "c"}]}
        )
    with pytest.raises(InvalidInput):
        parse_assessment(Quiz, [{"questions": []}])


def test_questions_default_to_multiple_choice():
    quiz = parse_assessment(Quiz, {"questions": [{"options": [{"text": "A"}, {"text": "B"}], "correct_answer": "option-1"}]})
    assert quiz.questions[0].type == "multiple-choice"
    assert grade_question(quiz.questions[0], "option-1").is_correct
