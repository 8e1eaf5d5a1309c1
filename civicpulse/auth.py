"""
Authorization Module (RBAC) with JWT Support
=============================================

Role-Based Access Control for the civic issue service.

Roles:
- citizen: report issues, read everything public
- government: everything a citizen can do, plus issue triage/resolution
  and infrastructure project management

Authorization Flow:
1. Decode the bearer JWT and load the user it names
2. Build a per-request AuthContext
3. Core operations receive the AuthContext and check permissions on it
   before touching any record (a denial never reveals whether the
   record exists)
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .db.models import User, UserRole
from .errors import Forbidden

logger = logging.getLogger(__name__)

# JWT configuration
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))


# =============================================================================
# PERMISSION TYPES
# =============================================================================

class Permission(str, Enum):
    """Available permissions in the system"""
    # Issue permissions
    ISSUE_CREATE = "issue:create"
    ISSUE_READ = "issue:read"
    ISSUE_UPDATE_STATUS = "issue:update_status"
    ISSUE_RESOLVE = "issue:resolve"
    ISSUE_LIST_GOVERNMENT = "issue:list_government"

    # Infrastructure permissions
    INFRA_READ = "infra:read"
    INFRA_CREATE = "infra:create"
    INFRA_UPDATE = "infra:update"
    INFRA_DELETE = "infra:delete"

    # Media
    MEDIA_UPLOAD = "media:upload"


ROLE_PERMISSIONS = {
    UserRole.CITIZEN: {
        Permission.ISSUE_CREATE, Permission.ISSUE_READ,
        Permission.INFRA_READ,
    },
    UserRole.GOVERNMENT: {
        Permission.ISSUE_CREATE, Permission.ISSUE_READ,
        Permission.ISSUE_UPDATE_STATUS, Permission.ISSUE_RESOLVE,
        Permission.ISSUE_LIST_GOVERNMENT,
        Permission.INFRA_READ, Permission.INFRA_CREATE,
        Permission.INFRA_UPDATE, Permission.INFRA_DELETE,
        Permission.MEDIA_UPLOAD,
    },
}


# =============================================================================
# PASSWORD HASHING
# =============================================================================

# bcrypt truncates passwords at 72 bytes; enforce to avoid 500s.
MAX_PASSWORD_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def is_password_too_long(password: str) -> bool:
    """Return True if password exceeds bcrypt 72-byte limit."""
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    if is_password_too_long(plain_password):
        logger.warning("Auth failed: password exceeds bcrypt 72-byte limit")
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning(f"Auth failed: invalid password format ({e})")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    if is_password_too_long(password):
        raise ValueError("Password exceeds bcrypt 72-byte limit")
    return pwd_context.hash(password)


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e}")
        return None


# =============================================================================
# AUTH CONTEXT
# =============================================================================

@dataclass(frozen=True)
class AuthContext:
    """Authenticated principal for a single request"""
    user_id: str
    username: str
    email: str
    role: UserRole

    @property
    def is_government(self) -> bool:
        return self.role == UserRole.GOVERNMENT

    def has_permission(self, permission: Permission) -> bool:
        """Check if the principal's role grants a permission"""
        return permission in ROLE_PERMISSIONS.get(self.role, set())


def require_permission(auth: AuthContext, permission: Permission) -> None:
    """
    Raise Forbidden unless the principal holds the permission.

    Called before any record lookup so that a denied caller learns nothing
    about the resource beyond the denial itself.
    """
    if auth is None or not auth.has_permission(permission):
        logger.warning(
            "Permission denied: %s lacks %s",
            getattr(auth, "user_id", None), permission.value,
        )
        raise Forbidden(f"Role not allowed to perform {permission.value}")


# =============================================================================
# AUTH SERVICE
# =============================================================================

class AuthService:
    """Builds AuthContexts from the user table"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def context_for(user: User) -> AuthContext:
        return AuthContext(
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
        )

    def get_auth_context(self, user_id: str) -> Optional[AuthContext]:
        """
        Build auth context for a user.

        Args:
            user_id: User ID from the JWT `sub` claim

        Returns:
            AuthContext if user exists and is active, None otherwise
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            logger.warning(f"Auth failed: user {user_id} not found or inactive")
            return None
        return self.context_for(user)

    def authenticate_user(self, email: str, password: str) -> Optional[AuthContext]:
        """
        Authenticate a user by email and password.

        Returns:
            AuthContext if authentication succeeds, None otherwise
        """
        user = self.db.query(User).filter(User.email == email, User.is_active == True).first()  # noqa: E712
        if not user:
            logger.warning(f"Auth failed: email {email} not found")
            return None

        if not user.password_hash:
            logger.warning(f"Auth failed: user {user.id} has no password set")
            return None

        if not verify_password(password, user.password_hash):
            logger.warning(f"Auth failed: invalid password for user {user.id}")
            return None

        user.last_login = datetime.utcnow()
        self.db.commit()
        return self.context_for(user)

    def register_user(self, username: str, email: str, password: str, role: UserRole) -> AuthContext:
        """Create an account. Caller checks for duplicates first."""
        user = User(
            username=username,
            email=email,
            password_hash=get_password_hash(password),
            role=role,
            is_active=True,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Registered {role.value} user {user.id}")
        return self.context_for(user)


def issue_token_for(auth: AuthContext) -> str:
    """Access token carrying the principal's id and role"""
    return create_access_token({"sub": auth.user_id, "role": auth.role.value})
