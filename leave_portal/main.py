import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from leave_portal.api.approvals import router as approvals_router
from leave_portal.api.leaves import router as leaves_router
from leave_portal.api.notifications import router as notifications_router
from leave_portal.core.config import settings
from leave_portal.core.db import close_client
from leave_portal.core.deps import build_gateway, init_services
from leave_portal.core.errors import (
    AuthorizationError,
    InvalidStateError,
    LeavePortalError,
    NotFoundError,
    PersistenceError,
    StaleStateError,
    ValidationError,
)
from leave_portal.core.gateway import MongoGateway

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Leave Portal Service",
    version="0.1.0",
    description="Leave request approval workflow for the college portal (REST + MongoDB)",
)

app.include_router(leaves_router)
app.include_router(approvals_router)
app.include_router(notifications_router)

ERROR_STATUS = [
    (StaleStateError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PersistenceError, status.HTTP_502_BAD_GATEWAY),
]


@app.exception_handler(LeavePortalError)
async def leave_portal_error_handler(request: Request, exc: LeavePortalError):
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    detail = str(exc)
    if isinstance(exc, PersistenceError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
        detail = f"Failed to reach the leave store. {exc}"
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "leave-portal",
    }


@app.get("/")
async def root():
    return {
        "message": "Leave Portal Service is running",
        "docs": "/docs",
    }


@app.on_event("startup")
async def on_startup():
    # tests wire their own gateway before the app starts
    if getattr(app.state, "gateway", None) is None:
        init_services(app, build_gateway())
    logger.info("Leave Portal Service started (storage=%s)", type(app.state.gateway).__name__)


@app.on_event("shutdown")
async def on_shutdown():
    if isinstance(app.state.gateway, MongoGateway):
        close_client()
