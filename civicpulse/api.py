"""
CivicPulse Service API
======================

FastAPI endpoints for civic issue reporting, triage, evidence-based
resolution and infrastructure project tracking.

Auth:
- POST /auth/register              - Create account, returns JWT
- POST /auth/login                 - Login, returns JWT
- GET  /auth/me                    - Current principal

Issues:
- POST /issues                     - Report an issue (multipart, 1-10 images)
- GET  /issues                     - List (filters: status, area, category, reporter=me)
- GET  /issues/government          - Open issues with area/category counts (government)
- GET  /issues/stats               - Counts by category and status
- GET  /issues/{id}                - Get issue
- PUT  /issues/{id}                - Status update (government)
- POST /issues/{id}/verify-resolve - Before/after verification (government)
- GET  /issues/{id}/events         - Audit trail

Infrastructure:
- POST/GET /infrastructure, GET/PUT/DELETE /infrastructure/{id}
- POST /infrastructure/upload      - Store one image, returns its URL

System:
- GET /health
- GET /media/{key}                 - Locally stored images

Run with:
    uvicorn civicpulse.api:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Header, Depends, UploadFile, File, Form, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, FileResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .schemas import (
    RegisterRequest, LoginRequest, TokenResponse, MeResponse,
    StatusUpdateRequest, VerifyResolveRequest,
    InfrastructureCreate, InfrastructureUpdate, UploadResponse,
    HealthResponse,
)
from .db.session import get_db, init_db
from .db.models import User, Issue, IssueStatus, IssueCategory, IssuePriority
from .auth import (
    AuthService, AuthContext, Permission,
    decode_token, issue_token_for, is_password_too_long, require_permission,
    MAX_PASSWORD_BYTES,
)
from .errors import CivicPulseError, ValidationError
from .records import (
    IssueRepository, InfrastructureRepository,
    issue_to_dict, infrastructure_to_dict, event_to_dict,
    parse_enum, parse_location, require_text,
)
from .workflow import IssueWorkflow, InfrastructureWorkflow
from .resolution import ResolutionGateway
from .intake import enrich_report
from .storage import ImageStorage, LocalImageStorage, get_storage, validate_image_names
from .webhooks import (
    ResolutionVerifier, ResolutionNotifier, ImageCategorizer, ReverseGeocoder,
    get_verifier, get_notifier, get_image_categorizer, get_geocoder,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="CivicPulse Service",
    description="Civic issue reporting, triage and evidence-based resolution",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


def _parse_cors_origins(raw: str) -> List[str]:
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().strip('"').strip("'").rstrip("/")
        if origin:
            origins.append(origin)
    return origins


CORS_ALLOW_ORIGINS = _parse_cors_origins(get_settings().cors_allow_origins)
logger.info(f"CORS allow origins: {CORS_ALLOW_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# =============================================================================
# Error handling
# =============================================================================

_STATUS_CODES = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


@app.exception_handler(CivicPulseError)
async def civicpulse_error_handler(request: Request, exc: CivicPulseError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _STATUS_CODES.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code, "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400 with the offending locations, never the inputs."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "detail": "Invalid request", "context": {"errors": errors}},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "internal_error", "detail": "Internal server error"})


# =============================================================================
# Dependencies
# =============================================================================

def get_db_dependency():
    """Get database session for FastAPI dependency injection"""
    db = next(get_db())
    try:
        yield db
    finally:
        db.close()


def get_verifier_dependency() -> ResolutionVerifier:
    return get_verifier()


def get_notifier_dependency() -> ResolutionNotifier:
    return get_notifier()


def get_geocoder_dependency() -> ReverseGeocoder:
    return get_geocoder()


def get_categorizer_dependency() -> ImageCategorizer:
    return get_image_categorizer()


def get_storage_dependency() -> ImageStorage:
    return get_storage()


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_db_dependency),
) -> Optional[AuthContext]:
    """
    Principal from `Authorization: Bearer <jwt>`.

    Returns None when no credentials are sent; a bad or stale token is a 401.
    """
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Bearer token required")

    token = authorization.split(" ", 1)[1].strip()
    payload = decode_token(token)
    if not payload or payload.get("type") != "access" or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    auth = AuthService(db).get_auth_context(payload["sub"])
    if not auth:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return auth


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user)
) -> AuthContext:
    """Require authenticated user"""
    if not auth:
        raise HTTPException(status_code=401, detail="Authentication required")
    return auth


# =============================================================================
# Auth Endpoints
# =============================================================================

@app.post("/auth/register", tags=["Auth"], response_model=TokenResponse, status_code=201)
async def register(request: RegisterRequest, db: Session = Depends(get_db_dependency)):
    """Create an account and return an access token."""
    if is_password_too_long(request.password):
        raise ValidationError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)", {"field": "password"})

    existing = db.query(User).filter(
        (User.email == request.email) | (User.username == request.username)
    ).first()
    if existing:
        raise ValidationError("User already exists", {"field": "email"})

    auth = AuthService(db).register_user(
        username=request.username.strip(),
        email=request.email,
        password=request.password,
        role=request.role,
    )
    return TokenResponse(access_token=issue_token_for(auth), user_id=auth.user_id, role=auth.role)


@app.post("/auth/login", tags=["Auth"], response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db_dependency)):
    """Login with email and password."""
    if is_password_too_long(request.password):
        raise ValidationError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)", {"field": "password"})

    auth = AuthService(db).authenticate_user(request.email, request.password)
    if not auth:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return TokenResponse(access_token=issue_token_for(auth), user_id=auth.user_id, role=auth.role)


@app.get("/auth/me", tags=["Auth"], response_model=MeResponse)
async def auth_me(auth: AuthContext = Depends(require_auth)):
    return MeResponse(user_id=auth.user_id, username=auth.username, email=auth.email, role=auth.role)


# =============================================================================
# Issue Endpoints
# =============================================================================

async def _store_uploads(storage: ImageStorage, owner_id: str, uploads: List[UploadFile]) -> List[str]:
    urls = []
    for upload in uploads:
        data = await upload.read()
        stored = storage.store_upload(owner_id, upload.filename, data, upload.content_type)
        urls.append(stored.url)
    return urls


@app.post("/issues", tags=["Issues"], status_code=201)
async def create_issue(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    lat: Optional[str] = Form(None),
    lng: Optional[str] = Form(None),
    area: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(default=None),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
    storage: ImageStorage = Depends(get_storage_dependency),
    geocoder: ReverseGeocoder = Depends(get_geocoder_dependency),
    categorizer: ImageCategorizer = Depends(get_categorizer_dependency),
):
    """
    Report an issue with 1-10 photos.

    Area and category are filled in when the reporter leaves them blank.
    """
    require_permission(auth, Permission.ISSUE_CREATE)
    require_text(title, "title")
    require_text(description, "description")
    parse_location(lat, lng)
    parse_enum(IssueCategory, category, "category")
    parse_enum(IssuePriority, priority, "priority")

    uploads = [f for f in (images or []) if f is not None and f.filename]
    if not uploads:
        raise ValidationError("At least one image is required", {"field": "images"})
    validate_image_names([f.filename for f in uploads])

    urls = await _store_uploads(storage, auth.user_id, uploads)
    area, chosen_category = await enrich_report(
        title, description, lat, lng, urls, area, category, geocoder, categorizer,
    )

    issue = IssueWorkflow(db).create_issue(
        auth,
        title=title,
        description=description,
        lat=lat,
        lng=lng,
        images=urls,
        area=area,
        category=chosen_category,
        priority=priority,
    )
    return issue_to_dict(issue)


@app.get("/issues", tags=["Issues"])
async def list_issues(
    status: Optional[str] = Query(None),
    area: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    reporter: Optional[str] = Query(None, description="'me' for the caller's own reports"),
    auth: Optional[AuthContext] = Depends(get_current_user),
    db: Session = Depends(get_db_dependency),
):
    reporter_id = None
    if reporter == "me":
        if not auth:
            raise HTTPException(status_code=401, detail="Authentication required")
        reporter_id = auth.user_id
    elif reporter:
        reporter_id = reporter

    issues = IssueRepository(db).list(status=status, area=area, category=category, reporter_id=reporter_id)
    return {"issues": [issue_to_dict(i) for i in issues], "total": len(issues)}


@app.get("/issues/government", tags=["Issues"])
async def list_government_issues(
    area: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
):
    """Open (non-Resolved) issues plus per-area and per-category counts."""
    require_permission(auth, Permission.ISSUE_LIST_GOVERNMENT)
    repo = IssueRepository(db)
    open_only = [IssueStatus.RESOLVED]
    issues = repo.list(area=area, category=category, exclude_statuses=open_only)
    return {
        "issues": [issue_to_dict(i) for i in issues],
        "total": len(issues),
        "area_counts": repo.counts_by(Issue.area, exclude_statuses=open_only),
        "category_counts": repo.counts_by(Issue.category, exclude_statuses=open_only),
    }


@app.get("/issues/stats", tags=["Issues"])
async def issue_stats(db: Session = Depends(get_db_dependency)):
    repo = IssueRepository(db)
    by_status = repo.counts_by(Issue.status)
    return {
        "total": sum(by_status.values()),
        "by_category": repo.counts_by(Issue.category),
        "by_status": by_status,
    }


@app.get("/issues/{issue_id}", tags=["Issues"])
async def get_issue(issue_id: str, db: Session = Depends(get_db_dependency)):
    return issue_to_dict(IssueRepository(db).get(issue_id))


@app.put("/issues/{issue_id}", tags=["Issues"])
async def update_issue_status(
    issue_id: str,
    request: StatusUpdateRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
):
    extras = request.model_dump(exclude={"status"}, exclude_none=True)
    issue = IssueWorkflow(db).update_status(auth, issue_id, request.status, extras)
    return issue_to_dict(issue)


@app.post("/issues/{issue_id}/verify-resolve", tags=["Issues"])
async def verify_resolve(
    issue_id: str,
    request: Request,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
    verifier: ResolutionVerifier = Depends(get_verifier_dependency),
    notifier: ResolutionNotifier = Depends(get_notifier_dependency),
    storage: ImageStorage = Depends(get_storage_dependency),
):
    """
    Resolve an issue from an after photo.

    Body is either JSON {"after": "<uri>"} or multipart with an `image` file.
    A negative verdict is a 200 with verification.resolved == false.
    """
    require_permission(auth, Permission.ISSUE_RESOLVE)
    gateway = ResolutionGateway(db, verifier, notifier)

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/"):
        form = await request.form()
        upload = form.get("image") or form.get("after")
        if isinstance(upload, StarletteUploadFile):
            # Nothing is stored unless a verification will actually run
            previous = gateway.precheck(auth, issue_id)
            if previous is not None:
                return previous.to_dict()
            stored = storage.store_upload(auth.user_id, upload.filename, await upload.read(), upload.content_type)
            after = stored.url
        else:
            after = upload
    else:
        try:
            body = await request.json()
            after = VerifyResolveRequest.model_validate(body).after
        except (ValueError, PydanticValidationError):
            raise ValidationError("Expected JSON body {\"after\": <image uri>}", {"field": "after"})

    outcome = await gateway.verify_and_resolve(auth, issue_id, after)
    return outcome.to_dict()


@app.get("/issues/{issue_id}/events", tags=["Issues"])
async def list_issue_events(issue_id: str, db: Session = Depends(get_db_dependency)):
    events = IssueRepository(db).events(issue_id)
    return {"events": [event_to_dict(e) for e in events]}


# =============================================================================
# Infrastructure Endpoints
# =============================================================================

@app.post("/infrastructure", tags=["Infrastructure"], status_code=201)
async def create_infrastructure(
    request: InfrastructureCreate,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
):
    project = InfrastructureWorkflow(db).create_project(auth, request.model_dump())
    return infrastructure_to_dict(project)


@app.get("/infrastructure", tags=["Infrastructure"])
async def list_infrastructure(
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    area: Optional[str] = Query(None),
    db: Session = Depends(get_db_dependency),
):
    projects = InfrastructureRepository(db).list(status=status, type_=type, area=area)
    return {"projects": [infrastructure_to_dict(p) for p in projects], "total": len(projects)}


@app.post("/infrastructure/upload", tags=["Infrastructure"], response_model=UploadResponse)
async def upload_infrastructure_image(
    image: UploadFile = File(...),
    auth: AuthContext = Depends(require_auth),
    storage: ImageStorage = Depends(get_storage_dependency),
):
    require_permission(auth, Permission.MEDIA_UPLOAD)
    stored = storage.store_upload(auth.user_id, image.filename, await image.read(), image.content_type)
    return UploadResponse(url=stored.url, key=stored.key, size_bytes=stored.size_bytes)


@app.get("/infrastructure/{project_id}", tags=["Infrastructure"])
async def get_infrastructure(project_id: str, db: Session = Depends(get_db_dependency)):
    return infrastructure_to_dict(InfrastructureRepository(db).get(project_id))


@app.put("/infrastructure/{project_id}", tags=["Infrastructure"])
async def update_infrastructure(
    project_id: str,
    request: InfrastructureUpdate,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
):
    data = request.model_dump(exclude_unset=True, exclude_none=True)
    project = InfrastructureWorkflow(db).update_project(auth, project_id, data)
    return infrastructure_to_dict(project)


@app.delete("/infrastructure/{project_id}", tags=["Infrastructure"])
async def delete_infrastructure(
    project_id: str,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_dependency),
):
    InfrastructureWorkflow(db).delete_project(auth, project_id)
    return {"deleted": True, "id": project_id}


# =============================================================================
# System
# =============================================================================

@app.get("/media/{key:path}", tags=["System"])
async def get_media(key: str, storage: ImageStorage = Depends(get_storage_dependency)):
    if not isinstance(storage, LocalImageStorage):
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(storage.path_for(key))


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        verifier_configured=bool(settings.verifier_webhook_url),
        notifier_configured=bool(settings.notifier_webhook_url),
        timestamp=datetime.now(),
    )


@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    settings = get_settings()
    logger.info(f"Starting CivicPulse Service v{settings.service_version}")
    init_db()
    for warning in settings.validate_webhook_config():
        logger.warning(warning)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    await get_verifier().close()
    await get_notifier().close()
    await get_image_categorizer().close()
    await get_geocoder().close()
    logger.info("CivicPulse Service stopped")
