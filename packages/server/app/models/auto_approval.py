"""Auto-approval configuration versions and the override audit log (both immutable)."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, UUIDMixin, _utcnow


class AutoApprovalConfigRecord(UUIDMixin, SQLModel, table=True):
    __tablename__ = "auto_approval_configs"

    version: int = Field(nullable=False, unique=True, index=True)
    document: Dict[str, Any] = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    updated_by: Optional[str] = None
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )


class AutoApprovalOverride(UUIDMixin, SQLModel, table=True):
    __tablename__ = "auto_approval_overrides"

    target_type: str = Field(nullable=False)
    target_ids: List[str] = Field(default_factory=list, sa_type=JSONType, nullable=False)
    original_status: str = Field(nullable=False)
    new_status: str = Field(nullable=False)
    reason: str = Field(nullable=False)  # EMERGENCY_OVERRIDE | QUALITY_CONCERN | POLICY_CHANGE | OTHER
    justification: str = Field(nullable=False)
    coordinator_id: uuid.UUID = Field(nullable=False, index=True)
    coordinator_name: str = Field(nullable=False)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        index=True,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
