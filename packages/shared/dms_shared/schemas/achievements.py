"""Donor achievement schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from .common import CamelModel


class AchievementType(str, Enum):
    FIRST_VERIFIED_DELIVERY = "FIRST_VERIFIED_DELIVERY"
    VERIFICATION_STREAK_5 = "VERIFICATION_STREAK_5"
    VERIFICATION_STREAK_10 = "VERIFICATION_STREAK_10"
    HEALTH_SPECIALIST = "HEALTH_SPECIALIST"
    WASH_EXPERT = "WASH_EXPERT"
    IMPACT_50_VERIFIED = "IMPACT_50_VERIFIED"
    IMPACT_200_VERIFIED = "IMPACT_200_VERIFIED"


class AchievementCategory(str, Enum):
    DELIVERY = "DELIVERY"
    CONSISTENCY = "CONSISTENCY"
    SPECIALIZATION = "SPECIALIZATION"
    IMPACT = "IMPACT"


class DonorVerificationStats(CamelModel):
    """Cumulative verified-delivery statistics for one donor."""
    total_verified_deliveries: int = 0
    total_beneficiaries_helped: int = 0
    verification_rate: float = 0.0
    current_verification_streak: int = 0
    response_type_deliveries: Dict[str, int] = Field(default_factory=dict)
    latest_verification: Optional[datetime] = None


class AchievementRead(CamelModel):
    id: uuid.UUID
    donor_id: uuid.UUID
    type: AchievementType
    title: str
    description: str
    category: AchievementCategory
    badge_icon: str
    earned_at: datetime
    response_id: Optional[uuid.UUID] = None
    verification_id: Optional[str] = None


class AchievementCalculation(CamelModel):
    new_achievements: List[AchievementRead] = Field(default_factory=list)
    total_achievements: int = 0


class AchievementProgress(CamelModel):
    type: AchievementType
    title: str
    category: AchievementCategory
    current: float
    target: float
    progress: float  # percentage, capped at 100
