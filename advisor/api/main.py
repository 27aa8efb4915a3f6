"""
Advisor HTTP API - application, routers and error mapping.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .actions import router as actions_router
from .deps import current_identity
from .schemas import FinancialSnapshotResponse, HealthResponse
from ..core import config
from ..core.auth import FEES_READ, PAYROLL_READ, Identity, require_capability
from ..core.db import health_check, init_db
from ..core.errors import AdvisorError, Forbidden
from ..core.financials import financial_snapshot
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    issues = config.validate_config()
    for issue in issues:
        logger.warning(f"Config issue: {issue}")
    yield


app = FastAPI(
    lifespan=lifespan,
    title="School Advisor API",
    version=config.VERSION,
    description="Role-gated advisory answers and confirmed writes over verified school records",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if config.CHAT_API_ENABLED:
    from .chat import router as chat_router
    app.include_router(chat_router, prefix="/chat", tags=["chat"])

app.include_router(actions_router, prefix="/actions", tags=["actions"])


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    issues = config.validate_config()
    return HealthResponse(
        status="healthy" if db_health and not issues else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
        generator=config.GENERATOR_PROVIDER,
        generator_available=config.get_generator().is_available(),
        config_issues=issues,
    )


@app.get("/financials/snapshot", response_model=FinancialSnapshotResponse)
def financial_snapshot_endpoint(identity: Identity = Depends(current_identity)):
    """Fresh fee and salary totals for the caller's school."""
    if not identity.school_id:
        raise Forbidden("No active school membership")
    require_capability(identity, identity.school_id, FEES_READ, "Your role cannot read fee records")
    require_capability(identity, identity.school_id, PAYROLL_READ, "Your role cannot read payroll records")
    return financial_snapshot(identity.school_id)


@app.exception_handler(AdvisorError)
async def advisor_error_handler(request, exc: AdvisorError):
    """Map the advisor error taxonomy to status codes and {error, code} bodies."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
    content = exc.to_dict()
    if config.debug_enabled() and exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=422,
        content={"error": first, "code": "invalid_request", "retryable": False},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}")
    content = {"error": "Internal server error", "code": "internal_error", "retryable": False}
    if config.debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)
