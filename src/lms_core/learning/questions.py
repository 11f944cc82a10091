"""Question and assessment definitions.

Questions form a tagged union keyed by ``type``. Every variant validates its
own answer key at authoring time, so grading can assume well-formed input.
The answer shape a learner submits for each variant is:

==================  ===============================================
type                submitted answer
==================  ===============================================
multiple-choice     option id (``str``)
true-false          ``bool``
multiple-answer     collection of option ids
text                ``str``
matching            mapping of pair id -> pair id
==================  ===============================================
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, validator

from lms_core.errors import InvalidInput

QUESTION_TYPES = ("multiple-choice", "true-false", "multiple-answer", "text", "matching")

MultipleChoiceAnswer = str
TrueFalseAnswer = bool
MultipleAnswerAnswer = List[str]
TextAnswer = str
MatchingAnswer = Dict[str, str]


def _new_id() -> str:
    return str(uuid.uuid4())


def _fill_ids(items: Any, prefix: str) -> Any:
    """Give unnamed options/pairs a positional id (``option-0``, ``pair-1``...)."""
    if not isinstance(items, list):
        return items
    filled = []
    for index, item in enumerate(items):
        if isinstance(item, Mapping) and not item.get("id"):
            item = {**item, "id": f"{prefix}-{index}"}
        filled.append(item)
    return filled


class Option(BaseModel):
    id: str
    text: str = ""


class MatchingPair(BaseModel):
    id: str
    left: str = ""
    right: str = ""


class BaseQuestion(BaseModel):
    """Fields shared by every question variant."""

    id: str = Field(default_factory=_new_id)
    text: str = ""
    points: int = Field(1, ge=0)
    explanation: str = ""


class MultipleChoiceQuestion(BaseQuestion):
    type: Literal["multiple-choice"] = "multiple-choice"
    options: List[Option]
    correct_answer: str

    @validator("options", pre=True)
    def name_options(cls, value: Any) -> Any:
        return _fill_ids(value, "option")

    @validator("options")
    def at_least_two_options(cls, value: List[Option]) -> List[Option]:
        if len(value) < 2:
            raise ValueError("multiple choice questions must have at least 2 options")
        return value

    @validator("correct_answer")
    def answer_is_an_option(cls, value: str, values: Dict[str, Any]) -> str:
        options = values.get("options") or []
        if options and value not in {option.id for option in options}:
            raise ValueError(f"correct_answer {value!r} is not one of the option ids")
        return value


class TrueFalseQuestion(BaseQuestion):
    type: Literal["true-false"] = "true-false"
    correct_answer: bool


class MultipleAnswerQuestion(BaseQuestion):
    type: Literal["multiple-answer"] = "multiple-answer"
    options: List[Option]
    correct_answers: List[str]

    @validator("options", pre=True)
    def name_options(cls, value: Any) -> Any:
        return _fill_ids(value, "option")

    @validator("options")
    def at_least_two_options(cls, value: List[Option]) -> List[Option]:
        if len(value) < 2:
            raise ValueError("multiple answer questions must have at least 2 options")
        return value

    @validator("correct_answers")
    def answers_are_options(cls, value: List[str], values: Dict[str, Any]) -> List[str]:
        options = values.get("options") or []
        unknown = set(value) - {option.id for option in options}
        if options and unknown:
            raise ValueError(f"correct_answers reference unknown options: {sorted(unknown)}")
        return value


class TextQuestion(BaseQuestion):
    type: Literal["text"] = "text"
    correct_answers: List[str]
    case_sensitive: bool = False

    @validator("correct_answers")
    def at_least_one_answer(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("text questions must list at least one accepted answer")
        return value


class MatchingQuestion(BaseQuestion):
    type: Literal["matching"] = "matching"
    pairs: List[MatchingPair]

    @validator("pairs", pre=True)
    def name_pairs(cls, value: Any) -> Any:
        return _fill_ids(value, "pair")

    @validator("pairs")
    def at_least_two_pairs(cls, value: List[MatchingPair]) -> List[MatchingPair]:
        if len(value) < 2:
            raise ValueError("matching questions must have at least 2 pairs")
        return value


Question = Annotated[
    Union[
        MultipleChoiceQuestion,
        TrueFalseQuestion,
        MultipleAnswerQuestion,
        TextQuestion,
        MatchingQuestion,
    ],
    Field(discriminator="type"),
]


class Assessment(BaseModel):
    """Ordered questions plus the scoring policy applied to them."""

    kind: ClassVar[str] = "assessment"

    id: str = Field(default_factory=_new_id)
    title: str = ""
    description: str = ""
    time_limit: int = Field(10, ge=0, description="Minutes.")
    passing_score: int = Field(70, ge=0, le=100)
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_feedback: bool = True
    allow_review: bool = True
    attempts_allowed: int = Field(0, ge=0, description="0 means unlimited.")
    is_enabled: bool = True
    questions: List[Question] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    @validator("questions", pre=True)
    def default_question_type(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            {**item, "type": item.get("type") or "multiple-choice"}
            if isinstance(item, Mapping)
            else item
            for item in value
        ]

    @validator("questions")
    def unique_question_ids(cls, value: List[BaseQuestion]) -> List[BaseQuestion]:
        seen: set[str] = set()
        for question in value:
            if question.id in seen:
                raise ValueError(f"duplicate question id {question.id!r}")
            seen.add(question.id)
        return value

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)

    def question(self, question_id: str) -> Optional[BaseQuestion]:
        return next((q for q in self.questions if q.id == question_id), None)


class Quiz(Assessment):
    """Lesson-scoped assessment."""

    kind: ClassVar[str] = "quiz"


class Exam(Assessment):
    """Course-scoped final exam."""

    kind: ClassVar[str] = "exam"

    require_all_lessons_completed: bool = False


AssessmentT = TypeVar("AssessmentT", bound=Assessment)


def parse_assessment(model: Type[AssessmentT], payload: Mapping[str, Any]) -> AssessmentT:
    """Validate an authored quiz/exam definition, surfacing problems as `InvalidInput`."""
    if not isinstance(payload, Mapping):
        raise InvalidInput(f"Invalid {model.kind} data: expected an object")
    if not isinstance(payload.get("questions"), list):
        raise InvalidInput(f"Invalid {model.kind} data: questions must be a list")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput(f"Invalid {model.kind} definition: {exc}") from exc
