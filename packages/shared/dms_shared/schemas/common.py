from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire schemas: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerifiableType(str, Enum):
    ASSESSMENT = "ASSESSMENT"
    RESPONSE = "RESPONSE"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    AUTO_VERIFIED = "AUTO_VERIFIED"
    REJECTED = "REJECTED"


class AssessmentType(str, Enum):
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"
    PRELIMINARY = "PRELIMINARY"


class ResponseType(str, Enum):
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"


class FeedbackType(str, Enum):
    REJECTION = "REJECTION"
    CLARIFICATION_REQUEST = "CLARIFICATION_REQUEST"
    APPROVAL_NOTE = "APPROVAL_NOTE"


class FeedbackPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RejectionReason(str, Enum):
    DATA_QUALITY = "DATA_QUALITY"
    MISSING_INFO = "MISSING_INFO"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INSUFFICIENT_EVIDENCE = "INSUFFICIENT_EVIDENCE"
    OTHER = "OTHER"


class OverrideReason(str, Enum):
    EMERGENCY_OVERRIDE = "EMERGENCY_OVERRIDE"
    QUALITY_CONCERN = "QUALITY_CONCERN"
    POLICY_CHANGE = "POLICY_CHANGE"
    OTHER = "OTHER"


class QueuePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# Numeric rank for sorting queue items by priority
QUEUE_PRIORITY_RANK: dict["QueuePriority", int] = {
    QueuePriority.LOW: 1,
    QueuePriority.MEDIUM: 2,
    QueuePriority.HIGH: 3,
}


class Role(str, Enum):
    ASSESSOR = "ASSESSOR"
    RESPONDER = "RESPONDER"
    COORDINATOR = "COORDINATOR"
    DONOR = "DONOR"
    ADMIN = "ADMIN"


class Pagination(CamelModel):
    page: int
    page_size: int
    total_pages: int
    total_count: int
