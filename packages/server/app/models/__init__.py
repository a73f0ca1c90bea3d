# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin, VerificationMixin  # noqa: F401
from .user import User  # noqa: F401
from .assessment import RapidAssessment  # noqa: F401
from .response import RapidResponse  # noqa: F401
from .feedback import Feedback  # noqa: F401
from .auto_approval import AutoApprovalConfigRecord, AutoApprovalOverride  # noqa: F401
from .achievement import DonorAchievement  # noqa: F401
