"""Rapid assessment model."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, VerificationMixin


class RapidAssessment(UUIDMixin, TimestampMixin, VerificationMixin, SQLModel, table=True):
    __tablename__ = "rapid_assessments"

    assessment_type: str = Field(nullable=False, index=True)  # HEALTH | WASH | ... | PRELIMINARY
