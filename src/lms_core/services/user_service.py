"""Service layer for user records, balances and admin dashboard statistics.

User documents may have been written by older clients with differently
spelled fields; everything returned from here is normalized first.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from lms_core.data_models import BalanceTransaction, User
from lms_core.errors import InsufficientBalance, InvalidInput, NotFound, PermissionDenied
from lms_core.learning.grading import percentage
from lms_core.learning.models import utcnow
from lms_core.services.common import require_id
from lms_core.storage import DocumentStore, normalize_user
from lms_core.storage.collection_names import (
    COURSES,
    ENROLLMENTS,
    USER_STATS,
    USER_TRANSACTIONS,
    USERS,
)

logger = logging.getLogger(__name__)

_PROTECTED_FIELDS = {"id", "balance", "is_admin", "role", "created_at"}


class BalanceUpdate(BaseModel):
    previous_balance: float
    new_balance: float
    amount: float
    transaction_id: str


class DashboardStats(BaseModel):
    """Platform totals shown on the admin dashboard."""

    total_users: int = 0
    total_courses: int = 0
    total_enrollments: int = 0
    completed_enrollments: int = 0
    completion_rate: int = 0
    popular_courses: List[Dict[str, Any]] = Field(default_factory=list)
    recent_enrollments: List[Dict[str, Any]] = Field(default_factory=list)


def user_from_document(data: Mapping[str, Any]) -> User:
    return User.model_validate(normalize_user(data))


class UserService:
    """User lookups, profile edits and the balance ledger."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create_user(self, data: Mapping[str, Any]) -> User:
        """Insert or replace a user document, normalizing legacy field names."""
        payload = normalize_user(data)
        user_id = require_id(payload.get("id"), "id")
        payload.setdefault("created_at", utcnow())
        user = User.model_validate(payload)
        self.store.set(USERS, user_id, user.model_dump(mode="json"))
        return user

    def list_users(self) -> List[User]:
        return [user_from_document(doc) for doc in self.store.list(USERS)]

    def get_user(self, user_id: str) -> User:
        data = self.store.get(USERS, require_id(user_id, "user_id"))
        if data is None:
            raise NotFound("User", user_id)
        return user_from_document({**data, "id": user_id})

    def search_users(self, term: str) -> List[User]:
        """Users whose email, name or username contains ``term`` (case-insensitive)."""
        needle = term.strip().lower()
        if not needle:
            return self.list_users()
        return [
            user
            for user in self.list_users()
            if any(
                needle in value.lower()
                for value in (user.email, user.first_name, user.last_name, user.username)
            )
        ]

    def update_profile(self, user_id: str, changes: Mapping[str, Any]) -> User:
        """Apply profile edits. Balance and role changes go through their own paths."""
        self.get_user(user_id)
        normalized = normalize_user(changes)
        blocked = sorted(_PROTECTED_FIELDS & set(normalized))
        if blocked:
            raise InvalidInput(f"Fields cannot be changed through a profile update: {', '.join(blocked)}")
        normalized["updated_at"] = utcnow().isoformat()
        self.store.update(USERS, user_id, normalized)
        return self.get_user(user_id)

    def touch_last_active(self, user_id: str) -> bool:
        """Stamp ``last_active``; a missing user is logged, not raised."""
        try:
            self.store.update(USERS, user_id, {"last_active": utcnow().isoformat()})
        except KeyError:
            logger.warning("Cannot update last_active for unknown user %s", user_id)
            return False
        return True

    def update_balance(
        self,
        user_id: str,
        amount: float,
        *,
        description: str = "",
        processed_by: str = "system",
        now: Optional[datetime] = None,
    ) -> BalanceUpdate:
        """
        Add ``amount`` (negative to withdraw) to a user's balance.

        The balance, the ledger entry and the user's running statistics are
        written in one transaction.

        Raises
        ------
        InvalidInput
            ``amount`` is zero or not a finite number.
        InsufficientBalance
            The result would be negative; nothing is written.
        """
        require_id(user_id, "user_id")
        if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount == 0:
            raise InvalidInput("Amount must be a non-zero number")
        now = now or utcnow()

        def body(reader, writer) -> BalanceUpdate:
            data = reader.get(USERS, user_id)
            if data is None:
                raise NotFound("User", user_id)
            stats = reader.get(USER_STATS, user_id) or {}

            current = float(user_from_document({**data, "id": user_id}).balance)
            new_balance = current + amount
            if new_balance < 0:
                raise InsufficientBalance(current, amount)

            entry = BalanceTransaction(
                user_id=user_id,
                amount=amount,
                before_balance=current,
                after_balance=new_balance,
                type="deposit" if amount > 0 else "withdrawal",
                description=description or ("Balance deposit" if amount > 0 else "Balance withdrawal"),
                processed_by=processed_by,
                timestamp=now,
            )
            total_field = "total_deposits" if amount > 0 else "total_withdrawals"
            writer.update(USERS, user_id, {"balance": new_balance, "updated_at": now.isoformat()})
            writer.set(USER_TRANSACTIONS, entry.id, entry.model_dump(mode="json"))
            writer.set(
                USER_STATS,
                user_id,
                {
                    "user_id": user_id,
                    "transaction_count": int(stats.get("transaction_count", 0)) + 1,
                    total_field: float(stats.get(total_field, 0)) + abs(amount),
                    "last_transaction_at": now.isoformat(),
                },
                merge=True,
            )
            return BalanceUpdate(
                previous_balance=current,
                new_balance=new_balance,
                amount=amount,
                transaction_id=entry.id,
            )

        result = self.store.with_transaction(body)
        logger.info(
            "Balance of %s changed by %s: %s -> %s",
            user_id,
            amount,
            result.previous_balance,
            result.new_balance,
        )
        return result

    def get_transaction_history(self, user_id: str, limit: int = 10) -> List[BalanceTransaction]:
        """Most recent ledger entries first."""
        docs = self.store.query(
            USER_TRANSACTIONS,
            where={"user_id": user_id},
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        return [BalanceTransaction.model_validate(doc) for doc in docs]

    def get_statistics(self, user_id: str) -> Dict[str, Any]:
        """Running counters for a user; zeros when nothing was recorded yet."""
        stats = self.store.get(USER_STATS, require_id(user_id, "user_id")) or {}
        return {
            "user_id": user_id,
            "courses_enrolled": int(stats.get("courses_enrolled", 0)),
            "courses_completed": int(stats.get("courses_completed", 0)),
            "transaction_count": int(stats.get("transaction_count", 0)),
            "total_deposits": float(stats.get("total_deposits", 0)),
            "total_withdrawals": float(stats.get("total_withdrawals", 0)),
            "last_transaction_at": stats.get("last_transaction_at"),
        }

    def dashboard_stats(self, admin_id: str) -> DashboardStats:
        """Platform totals, the five most popular courses and the ten latest enrollments."""
        if not self.get_user(admin_id).admin:
            raise PermissionDenied("Unauthorized: Admin access required")

        users = {doc["id"]: user_from_document(doc) for doc in self.store.list(USERS)}
        courses = self.store.list(COURSES)
        enrollments = self.store.list(ENROLLMENTS)
        completed = sum(1 for doc in enrollments if doc.get("is_completed"))

        popular = sorted(courses, key=lambda doc: int(doc.get("enrollment_count") or 0), reverse=True)[:5]
        recent = sorted(enrollments, key=lambda doc: doc.get("enrolled_at") or "", reverse=True)[:10]
        course_titles = {doc["id"]: doc.get("title", "") for doc in courses}

        return DashboardStats(
            total_users=len(users),
            total_courses=len(courses),
            total_enrollments=len(enrollments),
            completed_enrollments=completed,
            completion_rate=percentage(completed, len(enrollments)),
            popular_courses=[
                {
                    "id": doc["id"],
                    "title": doc.get("title", ""),
                    "enrollment_count": int(doc.get("enrollment_count") or 0),
                }
                for doc in popular
            ],
            recent_enrollments=[
                {
                    "id": doc["id"],
                    "learner_id": doc.get("learner_id"),
                    "learner_name": users[doc["learner_id"]].display_name
                    if doc.get("learner_id") in users
                    else "Unknown User",
                    "course_id": doc.get("course_id"),
                    "course_title": doc.get("course_title") or course_titles.get(doc.get("course_id"), ""),
                    "enrolled_at": doc.get("enrolled_at"),
                    "progress": doc.get("progress", 0),
                }
                for doc in recent
            ],
        )
