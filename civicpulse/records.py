"""
Record Store
============

CRUD by id for Issues and Infrastructure projects on top of SQLAlchemy,
with partial-patch updates and a compare-and-swap write for the Resolved
commit. Input validation for creation lives here so every entry point
(API, scripts, tests) gets the same checks.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from .db.models import (
    Issue, IssueEvent, IssueEventType, IssueStatus, IssueCategory, IssuePriority,
    Infrastructure, InfrastructureType, InfrastructureStatus, User,
)
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Validation helpers
# =============================================================================

def parse_enum(enum_cls: Type, value: Any, field: str, default=None):
    """Accept an enum member, its value or its name; None -> default."""
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    for member in enum_cls:
        if text == member.value or text.upper() == member.name or text.lower() == member.value.lower():
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(f"Invalid {field} '{value}' (allowed: {allowed})", {"field": field})


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"Missing required field: {field}", {"field": field})
    return str(value).strip()


def parse_location(lat: Any, lng: Any) -> tuple:
    if lat is None or lng is None or lat == "" or lng == "":
        raise ValidationError("Missing required field: location (lat, lng)", {"field": "location"})
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Location must be numeric lat/lng", {"field": "location"})
    if not -90.0 <= lat_f <= 90.0 or not -180.0 <= lng_f <= 180.0:
        raise ValidationError("Location out of range", {"field": "location"})
    return lat_f, lng_f


def parse_progress(value: Any) -> int:
    try:
        progress = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Progress must be an integer", {"field": "progress"})
    if not 0 <= progress <= 100:
        raise ValidationError("Progress must be between 0 and 100", {"field": "progress"})
    return progress


def parse_budget(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        budget = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Budget must be numeric", {"field": "budget"})
    if budget < 0:
        raise ValidationError("Budget cannot be negative", {"field": "budget"})
    return budget


def parse_date(value: Any, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(f"Invalid date for {field}", {"field": field})


def _value(enum_member) -> Optional[str]:
    return enum_member.value if enum_member is not None else None


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


# =============================================================================
# Serialization
# =============================================================================

def issue_to_dict(issue: Issue) -> Dict[str, Any]:
    reporter = issue.reporter
    return {
        "id": issue.id,
        "title": issue.title,
        "description": issue.description,
        "location": {"lat": issue.lat, "lng": issue.lng},
        "images": list(issue.images or []),
        "reporter": {
            "id": reporter.id,
            "username": reporter.username,
            "email": reporter.email,
        } if reporter else None,
        "status": _value(issue.status),
        "area": issue.area,
        "category": _value(issue.category),
        "priority": _value(issue.priority),
        "assigned_department": issue.assigned_department,
        "estimated_resolution_time": issue.estimated_resolution_time,
        "resolution_notes": issue.resolution_notes,
        "revision": issue.revision,
        "created_at": _iso(issue.created_at),
        "updated_at": _iso(issue.updated_at),
        "resolved_at": _iso(issue.resolved_at),
    }


def infrastructure_to_dict(project: Infrastructure) -> Dict[str, Any]:
    creator = project.created_by
    return {
        "id": project.id,
        "name": project.name,
        "type": _value(project.type),
        "description": project.description,
        "location": {"lat": project.lat, "lng": project.lng},
        "area": project.area,
        "status": _value(project.status),
        "budget": project.budget,
        "estimated_completion": project.estimated_completion.isoformat() if project.estimated_completion else None,
        "contractor": project.contractor,
        "progress": project.progress,
        "notes": project.notes,
        "images": list(project.images or []),
        "created_by": {
            "id": creator.id,
            "username": creator.username,
            "email": creator.email,
        } if creator else None,
        "created_at": _iso(project.created_at),
        "updated_at": _iso(project.updated_at),
    }


def event_to_dict(event: IssueEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "event_type": _value(event.event_type),
        "from_status": event.from_status,
        "to_status": event.to_status,
        "actor_id": event.actor_id,
        "note": event.note,
        "occurred_at": _iso(event.occurred_at),
    }


# =============================================================================
# Issue repository
# =============================================================================

ISSUE_PATCHABLE_FIELDS = {
    "status", "priority", "assigned_department", "estimated_resolution_time",
    "resolution_notes", "area", "category", "resolved_at",
}


class IssueRepository:
    """Issue persistence"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        reporter_id: str,
        title: str,
        description: str,
        lat: Any,
        lng: Any,
        images: Optional[Iterable[str]] = None,
        area: Optional[str] = None,
        category: Any = None,
        priority: Any = None,
    ) -> Issue:
        lat_f, lng_f = parse_location(lat, lng)
        issue = Issue(
            title=require_text(title, "title"),
            description=require_text(description, "description"),
            lat=lat_f,
            lng=lng_f,
            images=list(images or []),
            reporter_id=reporter_id,
            status=IssueStatus.REPORTED,
            area=(area or "").strip() or None,
            category=parse_enum(IssueCategory, category, "category", IssueCategory.OTHER),
            priority=parse_enum(IssuePriority, priority, "priority", IssuePriority.MEDIUM),
            revision=1,
        )
        self.db.add(issue)
        self.db.flush()
        self.add_event(issue.id, IssueEventType.ISSUE_CREATED, actor_id=reporter_id,
                       to_status=IssueStatus.REPORTED.value)
        self.db.commit()
        self.db.refresh(issue)
        return issue

    def get(self, issue_id: str) -> Issue:
        issue = self.db.query(Issue).filter(Issue.id == issue_id).first()
        if not issue:
            raise NotFound(f"Issue {issue_id} not found")
        return issue

    def list(
        self,
        status: Any = None,
        area: Optional[str] = None,
        category: Any = None,
        reporter_id: Optional[str] = None,
        exclude_statuses: Optional[Iterable[IssueStatus]] = None,
    ) -> List[Issue]:
        query = self._filtered(status, area, category, reporter_id, exclude_statuses)
        return query.order_by(Issue.created_at.desc()).all()

    def counts_by(self, column, exclude_statuses: Optional[Iterable[IssueStatus]] = None) -> Dict[str, int]:
        """Count issues grouped by one column, skipping NULL groups"""
        query = self.db.query(column, func.count(Issue.id))
        if exclude_statuses:
            query = query.filter(Issue.status.notin_(list(exclude_statuses)))
        rows = query.group_by(column).all()
        out = {}
        for key, count in rows:
            if key is None:
                continue
            out[key.value if hasattr(key, "value") else key] = count
        return out

    def _filtered(self, status, area, category, reporter_id, exclude_statuses):
        query = self.db.query(Issue)
        if status:
            query = query.filter(Issue.status == parse_enum(IssueStatus, status, "status"))
        if area:
            query = query.filter(Issue.area == area)
        if category:
            query = query.filter(Issue.category == parse_enum(IssueCategory, category, "category"))
        if reporter_id:
            query = query.filter(Issue.reporter_id == reporter_id)
        if exclude_statuses:
            query = query.filter(Issue.status.notin_(list(exclude_statuses)))
        return query

    def patch(self, issue: Issue, fields: Dict[str, Any]) -> Issue:
        """Shallow merge of the given fields; None values are skipped."""
        unknown = set(fields) - ISSUE_PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            if value is not None:
                setattr(issue, key, value)
        issue.revision = (issue.revision or 0) + 1
        self.db.flush()
        return issue

    def compare_and_swap(self, issue_id: str, expected_revision: int, fields: Dict[str, Any]) -> bool:
        """
        Apply fields only if the stored revision still equals expected_revision.

        Returns False when another writer got there first.
        """
        values = {k: v for k, v in fields.items() if v is not None}
        values["revision"] = expected_revision + 1
        values["updated_at"] = datetime.utcnow()
        result = self.db.execute(
            update(Issue)
            .where(Issue.id == issue_id, Issue.revision == expected_revision)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_event(
        self,
        issue_id: str,
        event_type: IssueEventType,
        actor_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        note: Optional[str] = None,
    ) -> IssueEvent:
        event = IssueEvent(
            issue_id=issue_id,
            event_type=event_type,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            note=note,
        )
        self.db.add(event)
        return event

    def events(self, issue_id: str) -> List[IssueEvent]:
        self.get(issue_id)
        return (
            self.db.query(IssueEvent)
            .filter(IssueEvent.issue_id == issue_id)
            .order_by(IssueEvent.occurred_at.asc())
            .all()
        )

    def reporter_of(self, issue: Issue) -> Optional[User]:
        if not issue.reporter_id:
            return None
        return self.db.query(User).filter(User.id == issue.reporter_id).first()


# =============================================================================
# Infrastructure repository
# =============================================================================

class InfrastructureRepository:
    """Infrastructure project persistence"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, created_by_id: str, data: Dict[str, Any]) -> Infrastructure:
        lat_f, lng_f = parse_location(data.get("lat"), data.get("lng"))
        type_ = parse_enum(InfrastructureType, data.get("type"), "type")
        if type_ is None:
            raise ValidationError("Missing required field: type", {"field": "type"})
        status = parse_enum(InfrastructureStatus, data.get("status"), "status", InfrastructureStatus.PLANNED)
        progress = parse_progress(data["progress"]) if data.get("progress") not in (None, "") else 0
        if status == InfrastructureStatus.COMPLETED:
            progress = 100

        project = Infrastructure(
            name=require_text(data.get("name"), "name"),
            type=type_,
            description=require_text(data.get("description"), "description"),
            lat=lat_f,
            lng=lng_f,
            area=require_text(data.get("area"), "area"),
            status=status,
            budget=parse_budget(data.get("budget")),
            estimated_completion=parse_date(data.get("estimated_completion"), "estimated_completion"),
            contractor=data.get("contractor") or None,
            progress=progress,
            notes=data.get("notes") or None,
            images=list(data.get("images") or []),
            created_by_id=created_by_id,
        )
        self.db.add(project)
        self.db.commit()
        self.db.refresh(project)
        return project

    def get(self, project_id: str) -> Infrastructure:
        project = self.db.query(Infrastructure).filter(Infrastructure.id == project_id).first()
        if not project:
            raise NotFound(f"Infrastructure project {project_id} not found")
        return project

    def list(self, status: Any = None, type_: Any = None, area: Optional[str] = None) -> List[Infrastructure]:
        query = self.db.query(Infrastructure)
        if status:
            query = query.filter(Infrastructure.status == parse_enum(InfrastructureStatus, status, "status"))
        if type_:
            query = query.filter(Infrastructure.type == parse_enum(InfrastructureType, type_, "type"))
        if area:
            query = query.filter(Infrastructure.area == area)
        return query.order_by(Infrastructure.created_at.desc()).all()

    def patch(self, project: Infrastructure, fields: Dict[str, Any]) -> Infrastructure:
        """Shallow merge of already-validated fields; None values are skipped."""
        for key, value in fields.items():
            if value is not None:
                setattr(project, key, value)
        self.db.commit()
        self.db.refresh(project)
        return project

    def delete(self, project: Infrastructure) -> None:
        self.db.delete(project)
        self.db.commit()
