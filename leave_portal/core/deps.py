import logging
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Header, HTTPException, Request, status

from leave_portal.core.config import settings
from leave_portal.core.db import get_database
from leave_portal.core.gateway import InMemoryGateway, MongoGateway, PersistenceGateway
from leave_portal.core.identity import IdentityProvider, UserSession
from leave_portal.core.notifications import NotificationSink
from leave_portal.services.queries import LeaveQueries
from leave_portal.services.workflow import ApprovalWorkflow

logger = logging.getLogger(__name__)


def build_gateway() -> PersistenceGateway:
    if settings.STORAGE_BACKEND == "memory":
        logger.warning("Using the in-memory store; data is lost on restart")
        return InMemoryGateway(timeout=settings.GATEWAY_TIMEOUT_SECONDS)
    return MongoGateway(get_database(), timeout=settings.GATEWAY_TIMEOUT_SECONDS)


def init_services(app: FastAPI, gateway: PersistenceGateway) -> None:
    """
    Wire the gateway, identity provider, workflow engine, query layer and
    notification sink onto ``app.state``.
    """
    notifications = NotificationSink(limit=settings.NOTIFICATION_LIMIT)
    app.state.gateway = gateway
    app.state.notifications = notifications
    app.state.identity = IdentityProvider(gateway, settings.USERS_COLLECTION)
    app.state.workflow = ApprovalWorkflow(
        gateway,
        notifications,
        collection=settings.LEAVE_COLLECTION,
        users_collection=settings.USERS_COLLECTION,
        approval_flow=settings.APPROVAL_FLOW,
        role_levels=settings.ROLE_LEVELS,
        return_policy=settings.RETURN_POLICY,
    )
    app.state.queries = LeaveQueries(
        gateway,
        collection=settings.LEAVE_COLLECTION,
        role_levels=settings.ROLE_LEVELS,
    )


def get_workflow(request: Request) -> ApprovalWorkflow:
    return request.app.state.workflow


def get_queries(request: Request) -> LeaveQueries:
    return request.app.state.queries


def get_notifications(request: Request) -> NotificationSink:
    return request.app.state.notifications


async def get_session(
    request: Request,
    x_user_id: Optional[str] = Header(None),
) -> AsyncGenerator[UserSession, None]:
    """
    Resolve the caller from the X-User-Id header set by the auth proxy and
    hold a session for the duration of the request.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    identity: IdentityProvider = request.app.state.identity
    user = await identity.current_user(x_user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive user",
        )
    session = identity.start_session(user)
    try:
        yield session
    finally:
        identity.end_session(session)
