"""
Database Package - SQLAlchemy
=============================

Persistence layer for users, issues and infrastructure projects.
"""

from .models import (
    Base,
    User, Issue, IssueEvent, ResolutionAttempt, Infrastructure,
    UserRole, IssueStatus, IssueCategory, IssuePriority,
    InfrastructureType, InfrastructureStatus,
    IssueEventType, ResolutionState,
)
from .session import get_db, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Models
    "User", "Issue", "IssueEvent", "ResolutionAttempt", "Infrastructure",
    # Enums
    "UserRole", "IssueStatus", "IssueCategory", "IssuePriority",
    "InfrastructureType", "InfrastructureStatus",
    "IssueEventType", "ResolutionState",
    # Session
    "get_db", "init_db", "get_engine", "reset_engine",
]
