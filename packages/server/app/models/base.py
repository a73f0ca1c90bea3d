"""Base mixins for SQLModel tables."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": _utcnow},
        sa_type=sa.DateTime(timezone=True),
    )


class UUIDMixin(SQLModel):
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )


class VerificationMixin(SQLModel):
    """Columns shared by every item that passes through the verification workflow."""

    submitter_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    submitter_name: str = Field(default="", nullable=False)
    submitted_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    completeness: float = Field(default=0.0, nullable=False)
    gps_accuracy_meters: Optional[float] = None
    media_attachments: List[str] = Field(default_factory=list, sa_type=JSONType, nullable=False)
    data: Dict[str, Any] = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    verification_status: str = Field(default="PENDING", nullable=False, index=True)
    auto_approval_rule_id: Optional[str] = None  # set when AUTO_VERIFIED
    verified_by: Optional[uuid.UUID] = None
    verified_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    auto_verified_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))  # never cleared
