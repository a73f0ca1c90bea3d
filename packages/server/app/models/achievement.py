"""Donor achievement model. One row per (donor, type)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, _utcnow


class DonorAchievement(UUIDMixin, SQLModel, table=True):
    __tablename__ = "donor_achievements"
    __table_args__ = (
        UniqueConstraint("donor_id", "type", name="uq_donor_achievement_type"),
    )

    donor_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    type: str = Field(nullable=False)
    title: str = Field(nullable=False)
    description: str = Field(nullable=False)
    category: str = Field(nullable=False)  # DELIVERY | CONSISTENCY | SPECIALIZATION | IMPACT
    badge_icon: str = Field(nullable=False)
    earned_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    response_id: Optional[uuid.UUID] = None
    verification_id: Optional[str] = None
