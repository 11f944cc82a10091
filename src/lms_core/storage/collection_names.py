"""Collection names shared by the services."""

COURSES = "courses"
ENROLLMENTS = "enrollments"
QUIZ_ATTEMPTS = "quiz_attempts"
EXAM_ATTEMPTS = "exam_attempts"
USERS = "users"
USER_TRANSACTIONS = "user_transactions"
USER_STATS = "user_stats"
ACHIEVEMENTS = "achievements"
CERTIFICATES = "certificates"
LEGACY_ENROLLMENTS = "legacy_enrollments"
