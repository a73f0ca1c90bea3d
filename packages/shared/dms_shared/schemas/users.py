"""User and session schemas."""

from __future__ import annotations

import uuid
from typing import List, Optional

from pydantic import EmailStr, Field

from .common import CamelModel, Role


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=200)
    role: Role = Role.ASSESSOR


class UserRead(CamelModel):
    id: uuid.UUID
    email: Optional[str] = None
    name: str
    role: Role
    organization: Optional[str] = None
    reputation_score: Optional[float] = None


class DashboardSection(CamelModel):
    key: str
    title: str
    path: str


class SessionInfo(CamelModel):
    """Response for GET /auth/me: who is signed in and what their dashboard shows."""
    user: UserRead
    dashboard: List[DashboardSection] = Field(default_factory=list)
