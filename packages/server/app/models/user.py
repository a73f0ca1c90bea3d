"""User model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: Optional[str] = Field(default=None, unique=True, index=True)
    name: str = Field(nullable=False)
    role: str = Field(nullable=False, default="ASSESSOR")  # ASSESSOR | RESPONDER | COORDINATOR | DONOR | ADMIN
    organization: Optional[str] = None
    reputation_score: Optional[float] = None  # 0..100, used by auto-approval thresholds
    password_hash: Optional[str] = Field(default=None)  # bcrypt hash for email/password login
