"""
API v1 Router
"""

from fastapi import APIRouter
from . import auto_approval, donors, feedback, submissions, verification

router = APIRouter()

# Intake (/assessments, /responses) and the caller's notifications
router.include_router(submissions.router, tags=["Submissions"])

# /verification/auto-approval/* must be registered before /verification/{queue}/*
router.include_router(
    auto_approval.router, prefix="/verification/auto-approval", tags=["Auto-Approval"]
)
router.include_router(verification.router, prefix="/verification", tags=["Verification"])
router.include_router(feedback.router, prefix="/feedback", tags=["Feedback"])
router.include_router(donors.router, prefix="/donors", tags=["Donors"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/assessments",
            "/responses",
            "/verification/{assessments|responses}/queue",
            "/verification/auto-approval/config",
            "/feedback",
            "/donors/{donorId}/achievements",
        ],
    }
