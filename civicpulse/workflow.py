"""
Status Workflow Engine
======================

Owns the status transition rules for Issues and Infrastructure projects and
the fields that accompany a transition.

Issue rules:
- Reported / In Progress can be set at any time by a government actor;
  extras are merged shallowly into the record.
- Resolved is only reachable through a resolution attempt that has been
  verified by the image-comparison service and notified to the reporter.
  There is no override: a bare status write to Resolved is rejected.
- The Resolved commit is a compare-and-swap on Issue.revision, so two
  concurrent resolution attempts cannot both win.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext, Permission, require_permission
from .db.models import (
    Issue, IssueStatus, IssuePriority, IssueEventType,
    Infrastructure, InfrastructureStatus, InfrastructureType,
    ResolutionAttempt, ResolutionState,
)
from .errors import InvalidTransition, ValidationError
from .records import (
    IssueRepository, InfrastructureRepository,
    parse_enum, parse_location, parse_progress, parse_budget, parse_date, require_text,
)

logger = logging.getLogger(__name__)

# Extras a government actor may attach to a status update
STATUS_EXTRAS = ("assigned_department", "estimated_resolution_time", "resolution_notes", "priority")

SUPERSEDED = "superseded"

# Resolution saga: Pending -> Verified -> Notified -> Committed
ATTEMPT_TRANSITIONS = {
    ResolutionState.PENDING: {ResolutionState.VERIFIED, ResolutionState.REJECTED, ResolutionState.FAILED},
    ResolutionState.VERIFIED: {ResolutionState.NOTIFIED, ResolutionState.FAILED},
    ResolutionState.NOTIFIED: {ResolutionState.COMMITTED, ResolutionState.FAILED},
    ResolutionState.REJECTED: set(),
    ResolutionState.COMMITTED: set(),
    ResolutionState.FAILED: set(),
}


def advance_attempt(attempt: ResolutionAttempt, state: ResolutionState) -> None:
    """Move a resolution attempt along the saga, rejecting skipped steps."""
    if state not in ATTEMPT_TRANSITIONS.get(attempt.state, set()):
        raise InvalidTransition(
            f"Resolution attempt cannot go from {attempt.state.value} to {state.value}",
            {"attempt_id": attempt.id},
        )
    logger.info(f"Resolution attempt {attempt.id}: {attempt.state.value} -> {state.value}")
    attempt.state = state


class IssueWorkflow:
    """Issue creation and status transitions"""

    def __init__(self, db: Session):
        self.db = db
        self.issues = IssueRepository(db)

    def create_issue(
        self,
        auth: AuthContext,
        title: str,
        description: str,
        lat: Any,
        lng: Any,
        images=None,
        area: Optional[str] = None,
        category: Any = None,
        priority: Any = None,
    ) -> Issue:
        require_permission(auth, Permission.ISSUE_CREATE)
        issue = self.issues.create(
            reporter_id=auth.user_id,
            title=title,
            description=description,
            lat=lat,
            lng=lng,
            images=images,
            area=area,
            category=category,
            priority=priority,
        )
        logger.info(f"Issue {issue.id} reported by {auth.user_id} ({len(issue.images or [])} images)")
        return issue

    def update_status(
        self,
        auth: AuthContext,
        issue_id: str,
        new_status: Any,
        extras: Optional[Dict[str, Any]] = None,
    ) -> Issue:
        """
        Move an issue to a new status.

        Raises:
            Forbidden: caller is not a government actor
            ValidationError: unknown status or extra
            NotFound: no such issue
            InvalidTransition: target is Resolved and no notified
                resolution attempt exists for the issue
        """
        require_permission(auth, Permission.ISSUE_UPDATE_STATUS)
        target = parse_enum(IssueStatus, new_status, "status")
        if target is None:
            raise ValidationError("Missing required field: status", {"field": "status"})
        fields = self._clean_extras(extras or {})

        issue = self.issues.get(issue_id)

        if target == IssueStatus.RESOLVED:
            if issue.status == IssueStatus.RESOLVED:
                return issue
            attempt = self.pending_commit(issue.id)
            if attempt is None:
                raise InvalidTransition(
                    "Issues can only be resolved through before/after verification",
                    {"issue_id": issue.id},
                )
            # A verified and notified attempt whose commit never landed
            require_permission(auth, Permission.ISSUE_RESOLVE)
            return self.commit_resolution(attempt, expected_revision=issue.revision, extras=fields)

        from_status = issue.status
        fields["status"] = target
        if from_status == IssueStatus.RESOLVED:
            issue.resolved_at = None
            # Leftover notified attempts describe the old problem
            self.supersede_notified(issue.id)
        self.issues.patch(issue, fields)
        self.issues.add_event(
            issue.id,
            IssueEventType.STATUS_CHANGED,
            actor_id=auth.user_id,
            from_status=from_status.value if from_status else None,
            to_status=target.value,
            note=fields.get("resolution_notes"),
        )
        self.db.commit()
        self.db.refresh(issue)
        logger.info(f"Issue {issue.id}: {from_status.value if from_status else None} -> {target.value} by {auth.user_id}")
        return issue

    def pending_commit(self, issue_id: str) -> Optional[ResolutionAttempt]:
        """Most recent attempt that was verified and notified but not committed."""
        return (
            self.db.query(ResolutionAttempt)
            .filter(
                ResolutionAttempt.issue_id == issue_id,
                ResolutionAttempt.state == ResolutionState.NOTIFIED,
            )
            .order_by(ResolutionAttempt.updated_at.desc())
            .first()
        )

    def supersede_notified(self, issue_id: str) -> int:
        """Fail every notified attempt for the issue so none can be committed later."""
        stale = (
            self.db.query(ResolutionAttempt)
            .filter(
                ResolutionAttempt.issue_id == issue_id,
                ResolutionAttempt.state == ResolutionState.NOTIFIED,
            )
            .all()
        )
        for attempt in stale:
            advance_attempt(attempt, ResolutionState.FAILED)
            attempt.error = SUPERSEDED
        return len(stale)

    def commit_resolution(
        self,
        attempt: ResolutionAttempt,
        expected_revision: int,
        extras: Optional[Dict[str, Any]] = None,
    ) -> Issue:
        """
        Apply the Resolved transition for a notified attempt.

        Only the Resolution Verification Gateway (or the recovery path in
        update_status) calls this.
        """
        if attempt.state != ResolutionState.NOTIFIED:
            raise InvalidTransition(
                f"Resolution attempt is {attempt.state.value}, expected notified",
                {"attempt_id": attempt.id},
            )

        issue = self.issues.get(attempt.issue_id)
        from_status = issue.status
        fields = dict(extras or {})
        fields["status"] = IssueStatus.RESOLVED
        fields["resolved_at"] = datetime.utcnow()

        if not self.issues.compare_and_swap(issue.id, expected_revision, fields):
            self.db.rollback()
            if self.issues.get(attempt.issue_id).status == IssueStatus.RESOLVED:
                # Another attempt already resolved the issue
                advance_attempt(attempt, ResolutionState.FAILED)
                attempt.error = SUPERSEDED
                self.db.commit()
            raise InvalidTransition(
                "Issue was modified while the resolution was in flight",
                {"issue_id": issue.id, "expected_revision": expected_revision},
            )

        advance_attempt(attempt, ResolutionState.COMMITTED)
        self.issues.add_event(
            issue.id,
            IssueEventType.RESOLUTION_COMMITTED,
            actor_id=attempt.actor_id,
            from_status=from_status.value if from_status else None,
            to_status=IssueStatus.RESOLVED.value,
            note=attempt.after_image,
        )
        self.db.commit()
        self.db.refresh(issue)
        logger.info(f"Issue {issue.id} resolved (attempt {attempt.id})")
        return issue

    @staticmethod
    def _clean_extras(extras: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(extras) - set(STATUS_EXTRAS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        fields = {k: v for k, v in extras.items() if v is not None}
        if "priority" in fields:
            fields["priority"] = parse_enum(IssuePriority, fields["priority"], "priority")
        return fields


class InfrastructureWorkflow:
    """Government-only infrastructure project management"""

    def __init__(self, db: Session):
        self.db = db
        self.projects = InfrastructureRepository(db)

    def create_project(self, auth: AuthContext, data: Dict[str, Any]) -> Infrastructure:
        require_permission(auth, Permission.INFRA_CREATE)
        project = self.projects.create(auth.user_id, data)
        logger.info(f"Infrastructure project {project.id} created by {auth.user_id}")
        return project

    def update_project(self, auth: AuthContext, project_id: str, data: Dict[str, Any]) -> Infrastructure:
        require_permission(auth, Permission.INFRA_UPDATE)
        fields = self._validated_patch(data)
        project = self.projects.get(project_id)

        if fields.get("status") == InfrastructureStatus.COMPLETED:
            fields["progress"] = 100

        project = self.projects.patch(project, fields)
        logger.info(f"Infrastructure project {project.id} updated by {auth.user_id}: {sorted(fields)}")
        return project

    def delete_project(self, auth: AuthContext, project_id: str) -> None:
        require_permission(auth, Permission.INFRA_DELETE)
        project = self.projects.get(project_id)
        self.projects.delete(project)
        logger.info(f"Infrastructure project {project_id} deleted by {auth.user_id}")

    @staticmethod
    def _validated_patch(data: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        for key in ("name", "description", "area"):
            if data.get(key) is not None:
                fields[key] = require_text(data[key], key)
        for key in ("contractor", "notes"):
            if data.get(key) is not None:
                fields[key] = data[key]

        if data.get("type") is not None:
            fields["type"] = parse_enum(InfrastructureType, data["type"], "type")
        if data.get("status") is not None:
            fields["status"] = parse_enum(InfrastructureStatus, data["status"], "status")
        if data.get("progress") is not None:
            fields["progress"] = parse_progress(data["progress"])
        if data.get("budget") is not None:
            fields["budget"] = parse_budget(data["budget"])
        if data.get("estimated_completion") is not None:
            fields["estimated_completion"] = parse_date(data["estimated_completion"], "estimated_completion")
        if data.get("images") is not None:
            fields["images"] = list(data["images"])

        has_lat, has_lng = data.get("lat") is not None, data.get("lng") is not None
        if has_lat or has_lng:
            fields["lat"], fields["lng"] = parse_location(data.get("lat"), data.get("lng"))

        return fields
