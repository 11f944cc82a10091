from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    """Dashboard user record in canonical (normalized) field names."""

    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    phone_number: str = ""
    gender: str = ""
    profile_picture: str = ""
    role: str = "student"
    is_admin: bool = False
    balance: float = 0.0
    enrolled_courses: List[Dict[str, Any]] = Field(default_factory=list)
    completed_courses: List[Dict[str, Any]] = Field(default_factory=list)
    last_active: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email or "Unknown User"

    @property
    def admin(self) -> bool:
        return self.is_admin or self.role == "admin"


class BalanceTransaction(BaseModel):
    """Ledger entry written alongside every balance change."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    amount: float
    before_balance: float
    after_balance: float
    type: Literal["deposit", "withdrawal"]
    description: str = ""
    processed_by: str = "system"
    timestamp: datetime


class Achievement(BaseModel):
    id: str
    user_id: str
    type: str = "course_completion"
    course_id: str
    course_title: str = ""
    certificate_id: Optional[str] = None
    achieved_at: datetime


class Certificate(BaseModel):
    certificate_id: str
    user_id: str
    course_id: str
    course_title: str = ""
    user_name: str = ""
    user_email: str = ""
    issued_at: datetime
    completed_at: datetime
    validity: str = "lifetime"
