from .assessment_service import AssessmentAvailability, AssessmentService, SubmissionResult
from .certificate_service import CertificateService
from .course_service import CourseService
from .enrollment_service import EnrollmentService, EnrollmentUpdate, EnrollResult
from .user_service import BalanceUpdate, DashboardStats, UserService

__all__ = [
    "AssessmentAvailability",
    "AssessmentService",
    "BalanceUpdate",
    "CertificateService",
    "CourseService",
    "DashboardStats",
    "EnrollResult",
    "EnrollmentService",
    "EnrollmentUpdate",
    "SubmissionResult",
    "UserService",
]
