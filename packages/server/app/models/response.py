"""Rapid response (delivery) model."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, VerificationMixin


class RapidResponse(UUIDMixin, TimestampMixin, VerificationMixin, SQLModel, table=True):
    __tablename__ = "rapid_responses"

    response_type: str = Field(nullable=False, index=True)
    donor_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", index=True)
    commitment_id: Optional[uuid.UUID] = None
    beneficiaries_served: int = Field(default=0, nullable=False)
