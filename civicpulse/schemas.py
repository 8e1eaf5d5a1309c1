"""
Pydantic Schemas for CivicPulse Service
=======================================

Request bodies and the small fixed-shape responses. Issue and
infrastructure records are returned as the dicts built in records.py.
"""

from typing import List, Optional
from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field

from .db.models import (
    UserRole, IssueStatus, IssuePriority, InfrastructureType, InfrastructureStatus,
)


# =============================================================================
# AUTH
# =============================================================================

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: UserRole = UserRole.CITIZEN


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: UserRole


class MeResponse(BaseModel):
    user_id: str
    username: str
    email: str
    role: UserRole


# =============================================================================
# ISSUES
# =============================================================================

class StatusUpdateRequest(BaseModel):
    """Status change plus optional government-only extras"""
    status: IssueStatus
    assigned_department: Optional[str] = None
    estimated_resolution_time: Optional[str] = None
    resolution_notes: Optional[str] = None
    priority: Optional[IssuePriority] = None


class VerifyResolveRequest(BaseModel):
    after: str = Field(..., min_length=1, description="URI of the after image")


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

class InfrastructureCreate(BaseModel):
    name: str = Field(..., min_length=1)
    type: InfrastructureType
    description: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    area: str = Field(..., min_length=1)
    status: InfrastructureStatus = InfrastructureStatus.PLANNED
    budget: Optional[float] = Field(None, ge=0)
    estimated_completion: Optional[date] = None
    contractor: Optional[str] = None
    progress: int = Field(0, ge=0, le=100)
    notes: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class InfrastructureUpdate(BaseModel):
    """Partial update; omitted fields are left alone"""
    name: Optional[str] = None
    type: Optional[InfrastructureType] = None
    description: Optional[str] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    area: Optional[str] = None
    status: Optional[InfrastructureStatus] = None
    budget: Optional[float] = Field(None, ge=0)
    estimated_completion: Optional[date] = None
    contractor: Optional[str] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    notes: Optional[str] = None
    images: Optional[List[str]] = None


class UploadResponse(BaseModel):
    url: str
    key: str
    size_bytes: int


# =============================================================================
# SYSTEM
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    verifier_configured: bool
    notifier_configured: bool
    timestamp: datetime = Field(..., description="Current timestamp")
