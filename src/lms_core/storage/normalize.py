"""Schema normalization for documents written by older clients.

Historical user documents spell the same field several ways (``FirstName``,
``firstName``, ``first_name``). Services read through these helpers so the
rest of the code only ever sees the canonical snake_case names.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Sequence

USER_FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "email": ("email", "Email"),
    "first_name": ("first_name", "FirstName", "firstName"),
    "last_name": ("last_name", "LastName", "lastName"),
    "balance": ("balance", "UserBalance", "userBalance"),
    "phone_number": ("phone_number", "PhoneNumber", "phoneNumber"),
    "username": ("username", "Username"),
    "gender": ("gender", "Gender"),
    "profile_picture": ("profile_picture", "ProfilePicture", "profilePicture"),
    "enrolled_courses": ("enrolled_courses", "enrolledCourses"),
    "completed_courses": ("completed_courses", "completedCourses"),
    "last_active": ("last_active", "lastActive"),
    "created_at": ("created_at", "createdAt"),
    "is_admin": ("is_admin", "isAdmin"),
}


def first_present(data: Mapping[str, Any], names: Sequence[str], default: Any = None) -> Any:
    """Value of the first name in ``names`` that is present and not None."""
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return default


def normalize_document(
    data: Mapping[str, Any], aliases: Mapping[str, Sequence[str]]
) -> Dict[str, Any]:
    """Fold alias spellings into canonical keys; unknown keys pass through untouched."""
    alias_names = {name for names in aliases.values() for name in names}
    normalized = {key: value for key, value in data.items() if key not in alias_names}
    for canonical, names in aliases.items():
        value = first_present(data, names)
        if value is not None:
            normalized[canonical] = value
    return normalized


def normalize_user(data: Mapping[str, Any]) -> Dict[str, Any]:
    return normalize_document(data, USER_FIELD_ALIASES)
