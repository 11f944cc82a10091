from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from pydantic import BaseModel

from lms_core.errors import InvalidInput, NotFound
from lms_core.learning.completion import CompletionEvent
from lms_core.learning.models import Course, Enrollment, enrollment_id
from lms_core.storage.collection_names import COURSES, ENROLLMENTS

logger = logging.getLogger(__name__)

CompletionListener = Callable[[CompletionEvent], Any]


class DocumentReader(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...


def dump(model: BaseModel) -> Dict[str, Any]:
    """JSON-compatible document for a model."""
    return model.model_dump(mode="json")


def require_id(value: Optional[str], name: str) -> str:
    if not value:
        raise InvalidInput(f"{name} is required")
    return value


def load_course(reader: DocumentReader, course_id: str) -> Course:
    data = reader.get(COURSES, require_id(course_id, "course_id"))
    if data is None:
        raise NotFound("Course", course_id)
    return Course.model_validate(data)


def load_enrollment(reader: DocumentReader, learner_id: str, course_id: str) -> Enrollment:
    key = enrollment_id(require_id(learner_id, "learner_id"), require_id(course_id, "course_id"))
    data = reader.get(ENROLLMENTS, key)
    if data is None:
        raise NotFound("Enrollment", key)
    return Enrollment.model_validate(data)


def deliver_completion(
    event: Optional[CompletionEvent], listeners: Iterable[CompletionListener]
) -> Optional[str]:
    """
    Hand a completion event to every listener.

    Best-effort: the enrollment is already committed, so a failing listener
    is logged and reported back as a message instead of raising.
    """
    if event is None:
        return None
    errors = []
    for listener in listeners:
        try:
            listener(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Completion listener failed for %s/%s: %s",
                event.learner_id,
                event.course_id,
                exc,
                exc_info=True,
            )
            errors.append(str(exc))
    return "; ".join(errors) or None
