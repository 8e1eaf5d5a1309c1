"""
Shared fixtures: a fresh SQLite database per test, seeded principals and
stub collaborators for the resolution saga.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import pytest

from civicpulse.db.models import UserRole
from civicpulse.webhooks import (
    ResolutionVerifier, ResolutionNotifier, VerificationVerdict, NotificationReceipt,
)

BEFORE_IMAGE = "https://img.civic.local/before.jpg"
AFTER_IMAGE = "https://img.civic.local/after.jpg"


@pytest.fixture
def sqlalchemy_db(tmp_path):
    from civicpulse.db.session import reset_engine, init_db

    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "civicpulse_test.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def db(sqlalchemy_db):
    from civicpulse.db.session import SessionLocal, get_engine

    get_engine()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(db, username: str, role: UserRole, password: str = "secret-pass"):
    from civicpulse.auth import AuthService
    return AuthService(db).register_user(username, f"{username}@civicpulse.in", password, role)


@pytest.fixture
def citizen(db):
    return make_user(db, "asha", UserRole.CITIZEN)


@pytest.fixture
def official(db):
    return make_user(db, "ward_office", UserRole.GOVERNMENT)


@pytest.fixture
def reported_issue(db, citizen):
    from civicpulse.workflow import IssueWorkflow
    return IssueWorkflow(db).create_issue(
        citizen,
        title="Pothole on Main St",
        description="Deep pothole near the bus stop",
        lat=12.9716,
        lng=77.5946,
        images=[BEFORE_IMAGE, "https://img.civic.local/extra.jpg"],
        area="Bengaluru",
    )


# =============================================================================
# Stub collaborators
# =============================================================================

@dataclass
class StubVerifier(ResolutionVerifier):
    """Returns a fixed verdict (or raises) and records every call"""
    verdict: VerificationVerdict = field(
        default_factory=lambda: VerificationVerdict(resolved=True, reason="Pothole filled", raw={"resolved": True})
    )
    error: Optional[Exception] = None
    calls: List[tuple] = field(default_factory=list)
    delay: float = 0.0

    async def verify(self, before: str, after: str) -> VerificationVerdict:
        self.calls.append((before, after))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.verdict


@dataclass
class StubNotifier(ResolutionNotifier):
    """Accepts every notice (or raises) and records it"""
    error: Optional[Exception] = None
    on_notify: Optional[Callable[[Any], None]] = None
    notices: List[Any] = field(default_factory=list)

    async def notify(self, notice) -> NotificationReceipt:
        self.notices.append(notice)
        if self.on_notify is not None:
            self.on_notify(notice)
        if self.error is not None:
            raise self.error
        return NotificationReceipt(status_code=200, body={"ok": True})


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def notifier():
    return StubNotifier()
