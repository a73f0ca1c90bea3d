"""Coordinator feedback schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from .common import CamelModel, FeedbackPriority, FeedbackType, VerifiableType


class FeedbackRead(CamelModel):
    id: uuid.UUID
    target_type: VerifiableType
    target_id: uuid.UUID
    recipient_id: Optional[uuid.UUID] = None
    coordinator_id: uuid.UUID
    coordinator_name: str
    type: FeedbackType
    reason: Optional[str] = None
    comments: str = ""
    priority: FeedbackPriority = FeedbackPriority.NORMAL
    requires_resubmission: bool = False
    is_read: bool = False
    is_resolved: bool = False
    created_at: datetime
    updated_at: datetime
    read_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
