from __future__ import annotations

import logging
from typing import List

from lms_core.data_models import Achievement, Certificate
from lms_core.learning.completion import CompletionEvent
from lms_core.learning.models import enrollment_id
from lms_core.services.user_service import user_from_document
from lms_core.storage import DocumentStore
from lms_core.storage.collection_names import ACHIEVEMENTS, CERTIFICATES, USER_STATS, USERS

logger = logging.getLogger(__name__)


class CertificateService:
    """
    Records what a course completion earns: a certificate, an achievement
    and a ``courses_completed`` bump on the learner's statistics.

    Instances are callable so they can be registered directly as completion
    listeners. Certificates are stored under the enrollment key, one per
    learner and course, so handling the same completion twice is a no-op
    even if two learners were handed the same certificate id.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def __call__(self, event: CompletionEvent) -> Certificate:
        return self.issue(event)

    def issue(self, event: CompletionEvent) -> Certificate:
        key = enrollment_id(event.learner_id, event.course_id)

        def body(reader, writer) -> Certificate:
            existing = reader.get(CERTIFICATES, key)
            user_data = reader.get(USERS, event.learner_id)
            stats = reader.get(USER_STATS, event.learner_id) or {}
            if existing is not None:
                return Certificate.model_validate(existing)

            user = user_from_document({**user_data, "id": event.learner_id}) if user_data else None
            certificate = Certificate(
                certificate_id=event.certificate_id,
                user_id=event.learner_id,
                course_id=event.course_id,
                course_title=event.course_title,
                user_name=user.display_name if user else "",
                user_email=user.email if user else "",
                issued_at=event.completed_at,
                completed_at=event.completed_at,
            )
            achievement = Achievement(
                id=f"{event.learner_id}_{event.course_id}_completion",
                user_id=event.learner_id,
                course_id=event.course_id,
                course_title=event.course_title,
                certificate_id=event.certificate_id,
                achieved_at=event.completed_at,
            )
            writer.set(CERTIFICATES, key, certificate.model_dump(mode="json"))
            writer.set(ACHIEVEMENTS, achievement.id, achievement.model_dump(mode="json"))
            writer.set(
                USER_STATS,
                event.learner_id,
                {
                    "user_id": event.learner_id,
                    "courses_completed": int(stats.get("courses_completed", 0)) + 1,
                },
                merge=True,
            )
            if user is not None:
                completed = [
                    entry for entry in user.completed_courses if entry.get("course_id") != event.course_id
                ]
                completed.append(
                    {
                        "course_id": event.course_id,
                        "course_title": event.course_title,
                        "certificate_id": event.certificate_id,
                        "completed_at": event.completed_at.isoformat(),
                    }
                )
                writer.update(USERS, event.learner_id, {"completed_courses": completed})
            return certificate

        certificate = self.store.with_transaction(body)
        logger.info("Certificate %s recorded for %s", certificate.certificate_id, event.learner_id)
        return certificate

    def get_certificate(self, certificate_id: str) -> Certificate | None:
        docs = self.store.query(CERTIFICATES, where={"certificate_id": certificate_id}, limit=1)
        return Certificate.model_validate(docs[0]) if docs else None

    def get_certificates(self, user_id: str) -> List[Certificate]:
        docs = self.store.query(CERTIFICATES, where={"user_id": user_id}, order_by="issued_at", descending=True)
        return [Certificate.model_validate(doc) for doc in docs]

    def get_achievements(self, user_id: str) -> List[Achievement]:
        docs = self.store.query(ACHIEVEMENTS, where={"user_id": user_id}, order_by="achieved_at", descending=True)
        return [Achievement.model_validate(doc) for doc in docs]
