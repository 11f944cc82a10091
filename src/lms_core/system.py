from __future__ import annotations

import random
from pathlib import Path
from typing import Optional

from lms_core.config import Settings, load_settings
from lms_core.learning.progress import ProgressTracker
from lms_core.services import (
    AssessmentService,
    CertificateService,
    CourseService,
    EnrollmentService,
    UserService,
)
from lms_core.storage import DocumentStore, create_document_store
from lms_core.utils.logging import configure_logging, get_logger

events = get_logger(__name__)


class LMSSystem:
    """
    Facade wiring the document store, progress tracker and services together.

    Both the CLI and embedding applications go through this class instead of
    constructing services by hand, so every service shares one store and one
    configuration.

    Attributes
    ----------
    settings : Settings
        Validated configuration, usually loaded from ``config/default.yaml``.
    store : DocumentStore
        Backend chosen by ``settings.storage.backend``.
    tracker : ProgressTracker
        Shared by the course, enrollment and assessment services.
    users, courses, enrollments, assessments, certificates
        The service layer. ``certificates`` is registered as the completion
        listener of ``enrollments``.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[DocumentStore] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Parameters
        ----------
        settings : Settings
            Configuration object.
        store : Optional[DocumentStore], default=None
            Pre-built store, mainly for tests. Built from ``settings.storage``
            when omitted.
        rng : Optional[random.Random], default=None
            Source of shuffling for learner-facing assessment views.
        """
        self.settings = settings
        configure_logging(settings.logging.level, settings.logging.use_json)

        self.store = store or create_document_store(settings.storage)
        self.tracker = ProgressTracker(settings.progress)

        self.users = UserService(self.store)
        self.certificates = CertificateService(self.store)
        self.courses = CourseService(self.store, self.tracker, settings.grading)
        self.enrollments = EnrollmentService(
            self.store,
            self.tracker,
            certificate_prefix=settings.certificates.id_prefix,
            legacy=settings.legacy,
            listeners=[self.certificates],
        )
        self.assessments = AssessmentService(self.store, self.enrollments, rng=rng)
        events.info("lms_system_ready", store=type(self.store).__name__, project=settings.project_name)

    @classmethod
    def from_config(
        cls,
        config_path: str | Path | None = None,
        store: Optional[DocumentStore] = None,
    ) -> "LMSSystem":
        """Load settings from YAML (plus environment overrides) and build the system."""
        return cls(load_settings(config_path), store=store)
