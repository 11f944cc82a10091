from __future__ import annotations

import random
from typing import Any, Dict, List, Optional, Sequence

from lms_core.learning.grading import attempts_remaining
from lms_core.learning.models import Attempt
from lms_core.learning.questions import Assessment, BaseQuestion

_ANSWER_KEY_FIELDS = {"correct_answer", "correct_answers", "pairs"}


def _learner_question(question: BaseQuestion, rng: random.Random) -> Dict[str, Any]:
    data = question.model_dump(mode="json", exclude=_ANSWER_KEY_FIELDS)
    if question.type == "matching":
        data["left_items"] = [{"id": pair.id, "text": pair.left} for pair in question.pairs]
        right_items = [{"id": pair.id, "text": pair.right} for pair in question.pairs]
        rng.shuffle(right_items)
        data["right_items"] = right_items
    return data


def learner_view(
    assessment: Assessment,
    previous_attempts: Sequence[Attempt] = (),
    *,
    completed: bool = False,
    best_score: int = 0,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Assessment as shown to a learner: answer keys removed, matching right column shuffled."""
    rng = rng or random.Random()
    questions = [_learner_question(question, rng) for question in assessment.questions]
    if assessment.shuffle_questions:
        rng.shuffle(questions)
    return {
        "id": assessment.id,
        "kind": assessment.kind,
        "title": assessment.title,
        "description": assessment.description,
        "time_limit": assessment.time_limit,
        "passing_score": assessment.passing_score,
        "attempts_allowed": assessment.attempts_allowed,
        "attempts_remaining": attempts_remaining(assessment, previous_attempts),
        "attempts_used": len(previous_attempts),
        "show_feedback": assessment.show_feedback,
        "allow_review": assessment.allow_review,
        "is_completed": completed,
        "best_score": best_score,
        "last_attempt_at": previous_attempts[-1].timestamp if previous_attempts else None,
        "questions": questions,
    }


def review_attempt(attempt: Attempt, assessment: Optional[Assessment]) -> List[Dict[str, Any]]:
    """Per-question results, enriched with prompts and answer keys when review is allowed."""
    results = [result.model_dump(mode="json") for result in attempt.questions]
    if assessment is None or not assessment.allow_review:
        return results
    lookup = {question.id: question for question in assessment.questions}
    enriched: List[Dict[str, Any]] = []
    for result in results:
        question = lookup.get(result["question_id"])
        if question is not None:
            result = {**result, **question.model_dump(mode="json", exclude={"id", "points"})}
        enriched.append(result)
    return enriched


def assessment_to_markdown(assessment: Assessment) -> str:
    """Convert a quiz or exam to markdown, answer key included, for download/export."""
    count = len(assessment.questions)
    title = assessment.title or assessment.kind.title()
    lines: List[str] = [f"# {title} - {count} Question{'s' if count != 1 else ''}", ""]
    lines.append(f"Passing score: {assessment.passing_score}%")
    lines.append("")

    for idx, question in enumerate(assessment.questions):
        lines.append(f"## Question {idx + 1} ({question.points} pt{'s' if question.points != 1 else ''})")
        lines.append(question.text)
        lines.append("")
        if question.type in ("multiple-choice", "multiple-answer"):
            letters = {}
            for choice_idx, option in enumerate(question.options):
                letters[option.id] = chr(65 + choice_idx)
                lines.append(f"{letters[option.id]}. {option.text}")
            lines.append("")
            if question.type == "multiple-choice":
                answer = letters.get(question.correct_answer, question.correct_answer)
            else:
                answer = ", ".join(letters.get(item, item) for item in question.correct_answers)
        elif question.type == "true-false":
            answer = "True" if question.correct_answer else "False"
        elif question.type == "text":
            answer = " / ".join(question.correct_answers)
        else:
            for pair in question.pairs:
                lines.append(f"- {pair.left}")
            lines.append("")
            answer = "; ".join(f"{pair.left} -> {pair.right}" for pair in question.pairs)
        lines.append(f"**Answer: {answer}**")
        lines.append("")

        if question.explanation:
            lines.append(f"**Explanation:** {question.explanation}")
            lines.append("")
        lines.append("---")
        lines.append("")

    return "\n".join(lines)


def format_attempt_summary(attempt: Attempt) -> str:
    """One-line-per-question summary of a scored attempt."""
    status = "passed" if attempt.passed else "not passed"
    lines: List[str] = [
        f"Attempt {attempt.attempt_number} on {attempt.assessment_kind} {attempt.assessment_id}",
        f"Score: {attempt.earned_points}/{attempt.total_points} points ({attempt.score}%), {status}",
    ]
    for index, result in enumerate(attempt.questions, start=1):
        mark = "correct" if result.correct else "incorrect"
        lines.append(f"- Q{index}: {mark}")
    return "\n".join(lines)
