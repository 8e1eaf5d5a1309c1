"""
Resolution Verification Gateway
===============================

Evidence-based resolution of an issue: the first stored image of the issue
is compared with a new "after" image by the verifier, the reporter is
notified, and only then is the issue committed as Resolved.

Every run is persisted as a ResolutionAttempt:

    pending --verifier--> verified --notifier--> notified --commit--> committed
       |                     |
       +--> rejected         +--> failed
       +--> failed

A crash between notification and commit leaves a notified attempt behind;
the next run (or a status update to Resolved) commits it without calling
the notifier again.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext, Permission, require_permission
from .db.models import (
    Issue, IssueStatus, IssueEventType, ResolutionAttempt, ResolutionState,
)
from .errors import CivicPulseError, MissingBeforeImage
from .records import IssueRepository, issue_to_dict, require_text
from .webhooks.notifier import ResolutionNotice, ResolutionNotifier
from .webhooks.verifier import ResolutionVerifier
from .workflow import IssueWorkflow, advance_attempt

logger = logging.getLogger(__name__)


@dataclass
class ResolutionOutcome:
    """Result of one verify-and-resolve call"""
    issue: Issue
    verification: Dict[str, Any]
    notification: Optional[Dict[str, Any]] = None
    attempt_id: Optional[str] = None
    already_resolved: bool = False

    @property
    def resolved(self) -> bool:
        return self.issue.status == IssueStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolved": self.resolved,
            "already_resolved": self.already_resolved,
            "verification": self.verification,
            "notification": self.notification,
            "attempt_id": self.attempt_id,
            "issue": issue_to_dict(self.issue),
        }


class ResolutionGateway:
    """Runs the verify -> notify -> commit saga for one issue"""

    def __init__(self, db: Session, verifier: ResolutionVerifier, notifier: ResolutionNotifier):
        self.db = db
        self.verifier = verifier
        self.notifier = notifier
        self.issues = IssueRepository(db)
        self.workflow = IssueWorkflow(db)

    def precheck(self, auth: AuthContext, issue_id: str) -> Optional[ResolutionOutcome]:
        """
        Check everything that does not depend on the after image.

        Returns the previous outcome when the issue is already Resolved,
        None when a resolution attempt may proceed.
        """
        require_permission(auth, Permission.ISSUE_RESOLVE)
        issue = self.issues.get(issue_id)

        if issue.status == IssueStatus.RESOLVED:
            return self._already_resolved(issue)

        if not issue.images:
            raise MissingBeforeImage(
                f"Issue {issue.id} has no image to compare against",
                {"issue_id": issue.id},
            )
        return None

    async def verify_and_resolve(self, auth: AuthContext, issue_id: str, after_image: str) -> ResolutionOutcome:
        """
        Verify an after-image against the issue's first image and resolve it.

        Raises:
            Forbidden: caller is not a government actor
            ValidationError: no after image given
            NotFound: no such issue
            MissingBeforeImage: the issue has no stored image
            VerificationServiceError: verifier failed or answered malformed
            NotificationFailed: notifier failed after a positive verdict
            InvalidTransition: the issue changed while the saga was running
        """
        require_permission(auth, Permission.ISSUE_RESOLVE)
        after = require_text(after_image, "after")
        previous = self.precheck(auth, issue_id)
        if previous is not None:
            return previous
        issue = self.issues.get(issue_id)

        pending = self.workflow.pending_commit(issue.id)
        if pending is not None:
            logger.info(f"Issue {issue.id}: committing notified attempt {pending.id}")
            return self._commit(pending, issue.revision)

        expected_revision = int(issue.revision)
        before = issue.images[0]
        notice = ResolutionNotice(
            issue_id=issue.id,
            title=issue.title,
            description=issue.description,
            reporter_email=None,
            reporter_username=None,
            status=IssueStatus.RESOLVED.value,
            before_image=before,
            after_image=after,
        )
        reporter = self.issues.reporter_of(issue)
        if reporter is not None:
            notice.reporter_email = reporter.email
            notice.reporter_username = reporter.username

        attempt = ResolutionAttempt(
            issue_id=issue.id,
            actor_id=auth.user_id,
            before_image=before,
            after_image=after,
            state=ResolutionState.PENDING,
        )
        self.db.add(attempt)
        self.db.commit()
        logger.info(f"Resolution attempt {attempt.id} started for issue {notice.issue_id} by {auth.user_id}")

        # Step 1: verifier
        try:
            verdict = await self.verifier.verify(before, after)
        except Exception as e:
            self._fail(attempt, e)
            raise

        attempt.verification_json = verdict.to_dict()
        attempt.reason = verdict.reason

        # Step 2: negative verdict leaves the issue untouched
        if not verdict.resolved:
            advance_attempt(attempt, ResolutionState.REJECTED)
            self.issues.add_event(
                attempt.issue_id, IssueEventType.RESOLUTION_REJECTED,
                actor_id=auth.user_id, note=verdict.reason,
            )
            self.db.commit()
            return ResolutionOutcome(
                issue=self.issues.get(attempt.issue_id),
                verification=verdict.to_dict(),
                attempt_id=attempt.id,
            )

        advance_attempt(attempt, ResolutionState.VERIFIED)
        self.issues.add_event(
            attempt.issue_id, IssueEventType.RESOLUTION_VERIFIED,
            actor_id=auth.user_id, note=verdict.reason,
        )
        self.db.commit()

        # Step 3: notifier
        try:
            receipt = await self.notifier.notify(notice)
        except Exception as e:
            self._fail(attempt, e)
            raise

        advance_attempt(attempt, ResolutionState.NOTIFIED)
        attempt.notification_json = receipt.to_dict()
        self.issues.add_event(
            attempt.issue_id, IssueEventType.RESOLUTION_NOTIFIED,
            actor_id=auth.user_id, note=notice.reporter_email,
        )
        self.db.commit()

        # Step 4: commit Resolved
        return self._commit(attempt, expected_revision)

    def _commit(self, attempt: ResolutionAttempt, expected_revision: int) -> ResolutionOutcome:
        issue = self.workflow.commit_resolution(attempt, expected_revision)
        return ResolutionOutcome(
            issue=issue,
            verification=dict(attempt.verification_json or {}),
            notification=dict(attempt.notification_json or {}) or None,
            attempt_id=attempt.id,
        )

    def _already_resolved(self, issue: Issue) -> ResolutionOutcome:
        last = (
            self.db.query(ResolutionAttempt)
            .filter(
                ResolutionAttempt.issue_id == issue.id,
                ResolutionAttempt.state == ResolutionState.COMMITTED,
            )
            .order_by(ResolutionAttempt.updated_at.desc())
            .first()
        )
        logger.info(f"Issue {issue.id} already resolved, skipping verification")
        if last is None:
            return ResolutionOutcome(issue=issue, verification={"resolved": True}, already_resolved=True)
        return ResolutionOutcome(
            issue=issue,
            verification=dict(last.verification_json or {}),
            notification=dict(last.notification_json or {}) or None,
            attempt_id=last.id,
            already_resolved=True,
        )

    def _fail(self, attempt: ResolutionAttempt, error: Exception) -> None:
        message = error.message if isinstance(error, CivicPulseError) else str(error)
        logger.error(f"Resolution attempt {attempt.id} failed in state {attempt.state.value}: {message}")
        self.db.rollback()
        advance_attempt(attempt, ResolutionState.FAILED)
        attempt.error = message
        self.db.commit()
