"""
SQLAlchemy Models for Database
==============================

Schema for civic issue reporting:
- Users (citizens and government staff)
- Issues with images, status workflow and audit events
- Resolution attempts (verify-and-resolve saga state)
- Infrastructure projects

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Text, Integer, Float, Boolean, DateTime, Date, Enum, ForeignKey,
    Index, JSON, CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, enum.Enum):
    """Principal type"""
    CITIZEN = "citizen"
    GOVERNMENT = "government"


class IssueStatus(str, enum.Enum):
    """Issue lifecycle status"""
    REPORTED = "Reported"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"


class IssueCategory(str, enum.Enum):
    ROADS = "Roads"
    WATER = "Water"
    ELECTRICITY = "Electricity"
    SANITATION = "Sanitation"
    PUBLIC_PROPERTY = "Public Property"
    OTHER = "Other"


class IssuePriority(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class InfrastructureType(str, enum.Enum):
    ROAD = "Road"
    BRIDGE = "Bridge"
    BUILDING = "Building"
    PARK = "Park"
    WATER_SYSTEM = "Water System"
    ELECTRICITY_GRID = "Electricity Grid"
    SEWAGE_SYSTEM = "Sewage System"
    OTHER = "Other"


class InfrastructureStatus(str, enum.Enum):
    """Infrastructure project lifecycle status"""
    PLANNED = "Planned"
    UNDER_CONSTRUCTION = "Under Construction"
    COMPLETED = "Completed"
    MAINTENANCE_REQUIRED = "Maintenance Required"
    OUT_OF_SERVICE = "Out of Service"


class IssueEventType(str, enum.Enum):
    """Issue timeline event types"""
    ISSUE_CREATED = "issue_created"
    STATUS_CHANGED = "status_changed"
    RESOLUTION_VERIFIED = "resolution_verified"
    RESOLUTION_REJECTED = "resolution_rejected"
    RESOLUTION_NOTIFIED = "resolution_notified"
    RESOLUTION_COMMITTED = "resolution_committed"


class ResolutionState(str, enum.Enum):
    """Verify-and-resolve saga states"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    NOTIFIED = "notified"
    COMMITTED = "committed"
    FAILED = "failed"


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    """Citizen or government account"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.CITIZEN, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)

    # Relationships
    issues = relationship("Issue", back_populates="reporter", foreign_keys="Issue.reporter_id")
    infrastructure_projects = relationship("Infrastructure", back_populates="created_by")


# =============================================================================
# ISSUES
# =============================================================================

class Issue(Base):
    """Citizen-filed civic issue report"""
    __tablename__ = "issues"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    images = Column(JSON, default=list)
    reporter_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(Enum(IssueStatus), default=IssueStatus.REPORTED, nullable=False)
    area = Column(String(255), nullable=True)
    category = Column(Enum(IssueCategory), default=IssueCategory.OTHER, nullable=False)
    priority = Column(Enum(IssuePriority), default=IssuePriority.MEDIUM, nullable=False)
    assigned_department = Column(String(255), nullable=True)
    estimated_resolution_time = Column(String(100), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    # Bumped on every write; the Resolved commit compares and swaps on it
    revision = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_issue_status", "status"),
        Index("ix_issue_area_category", "area", "category"),
    )

    # Relationships
    reporter = relationship("User", back_populates="issues", foreign_keys=[reporter_id])
    events = relationship("IssueEvent", back_populates="issue", cascade="all, delete-orphan",
                          order_by="IssueEvent.occurred_at")
    resolution_attempts = relationship("ResolutionAttempt", back_populates="issue", cascade="all, delete-orphan")


class IssueEvent(Base):
    """Timeline event for audit trail"""
    __tablename__ = "issue_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    issue_id = Column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(Enum(IssueEventType), nullable=False)
    from_status = Column(String(50), nullable=True)
    to_status = Column(String(50), nullable=True)
    actor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    note = Column(Text, nullable=True)
    occurred_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_issue_event_issue", "issue_id", "occurred_at"),
    )

    issue = relationship("Issue", back_populates="events")


class ResolutionAttempt(Base):
    """One run of the verify-and-resolve saga"""
    __tablename__ = "resolution_attempts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    issue_id = Column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    before_image = Column(Text, nullable=False)
    after_image = Column(Text, nullable=False)
    state = Column(Enum(ResolutionState), default=ResolutionState.PENDING, nullable=False)
    reason = Column(Text, nullable=True)
    verification_json = Column(JSON, default=dict)
    notification_json = Column(JSON, default=dict)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_resolution_issue_state", "issue_id", "state"),
    )

    issue = relationship("Issue", back_populates="resolution_attempts")


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

class Infrastructure(Base):
    """Government-managed public works project"""
    __tablename__ = "infrastructure"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    type = Column(Enum(InfrastructureType), nullable=False)
    description = Column(Text, nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    area = Column(String(255), nullable=False)
    status = Column(Enum(InfrastructureStatus), default=InfrastructureStatus.PLANNED, nullable=False)
    budget = Column(Float, nullable=True)
    estimated_completion = Column(Date, nullable=True)
    contractor = Column(String(255), nullable=True)
    progress = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    images = Column(JSON, default=list)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_infrastructure_progress"),
    )

    created_by = relationship("User", back_populates="infrastructure_projects")
