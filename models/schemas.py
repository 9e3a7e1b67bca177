"""
Core data models shared by producers, scanners and workers.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from models.jobs import EmailType


class DigestType(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    YEARLY = "yearly"

    @property
    def email_type(self) -> EmailType:
        return _DIGEST_EMAIL_TYPES[self]


_DIGEST_EMAIL_TYPES = {
    DigestType.MONTHLY: EmailType.MONTHLY_RECAP,
    DigestType.WEEKLY: EmailType.WEEKLY_RECAP,
    DigestType.YEARLY: EmailType.YEARLY_RECAP,
}


class UserContact(BaseModel):
    """What the job system needs to know about a user: where to write and how to greet."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
