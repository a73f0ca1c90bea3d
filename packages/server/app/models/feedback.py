"""Coordinator feedback model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Feedback(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "feedback"

    target_type: str = Field(nullable=False)  # ASSESSMENT | RESPONSE
    target_id: uuid.UUID = Field(nullable=False, index=True)
    recipient_id: Optional[uuid.UUID] = Field(default=None, index=True)
    coordinator_id: uuid.UUID = Field(nullable=False)
    coordinator_name: str = Field(nullable=False)
    type: str = Field(nullable=False)  # REJECTION | CLARIFICATION_REQUEST | APPROVAL_NOTE
    reason: Optional[str] = None
    comments: str = Field(default="", nullable=False)
    priority: str = Field(default="NORMAL", nullable=False)
    requires_resubmission: bool = Field(default=False, nullable=False)
    is_read: bool = Field(default=False, nullable=False)
    is_resolved: bool = Field(default=False, nullable=False)
    read_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    resolved_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
