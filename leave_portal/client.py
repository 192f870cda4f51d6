"""
Async client for the leave portal API, used by the portal UI layer.

The service has no push channel; ``ApprovalPoller`` re-fetches an approver's
queue on a fixed interval until it is stopped.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from leave_portal.core.config import settings
from leave_portal.core.errors import (
    AuthorizationError,
    InvalidStateError,
    LeavePortalError,
    NotFoundError,
    PersistenceError,
    StaleStateError,
    ValidationError,
)
from leave_portal.schemas.leave import DecisionAction, LeaveRequest, LeaveStats

logger = logging.getLogger(__name__)

STALE_DETAIL = "request was already processed by someone else"


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    try:
        detail = resp.json().get("detail", resp.text)
    except ValueError:
        detail = resp.text

    if resp.status_code == 409:
        if detail == STALE_DETAIL:
            raise StaleStateError(request_id="")
        raise InvalidStateError(detail)
    if resp.status_code == 422:
        raise ValidationError(detail)
    if resp.status_code in (401, 403):
        raise AuthorizationError(detail)
    if resp.status_code == 404:
        raise NotFoundError(detail)
    if resp.status_code in (502, 503, 504):
        raise PersistenceError(detail)
    raise LeavePortalError(f"Unexpected response {resp.status_code}: {detail}")


class PortalClient:
    def __init__(
        self,
        user_id: str,
        base_url: str = settings.PORTAL_BASE_URL,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"X-User-Id": user_id},
            transport=transport,
        )

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit_leave(self, payload: Dict[str, Any]) -> LeaveRequest:
        resp = await self._client.post("/leaves", json=payload)
        _raise_for_error(resp)
        return LeaveRequest.model_validate(resp.json())

    async def my_leaves(self, **filters: Optional[str]) -> List[LeaveRequest]:
        params = {k: v for k, v in filters.items() if v is not None}
        resp = await self._client.get("/leaves/me", params=params)
        _raise_for_error(resp)
        return [LeaveRequest.model_validate(item) for item in resp.json()]

    async def approval_queue(self, **filters: Optional[str]) -> List[LeaveRequest]:
        params = {k: v for k, v in filters.items() if v is not None}
        resp = await self._client.get("/approvals", params=params)
        _raise_for_error(resp)
        return [LeaveRequest.model_validate(item) for item in resp.json()]

    async def approval_stats(self) -> LeaveStats:
        resp = await self._client.get("/approvals/stats")
        _raise_for_error(resp)
        return LeaveStats.model_validate(resp.json())

    async def decide(self, request_id: str, action: DecisionAction, remarks: str = "") -> LeaveRequest:
        resp = await self._client.post(
            f"/approvals/{request_id}/decision",
            json={"action": DecisionAction(action).value, "remarks": remarks},
        )
        _raise_for_error(resp)
        return LeaveRequest.model_validate(resp.json())

    async def unread_notifications(self) -> int:
        resp = await self._client.get("/notifications/unread-count")
        _raise_for_error(resp)
        return resp.json()["unread"]


class ApprovalPoller:
    """
    Cancellable ticker: fetches the approval queue every ``interval`` seconds
    and hands each result to ``on_update``. A failed fetch or a failing
    ``on_update`` is logged, passed to ``on_error`` and the next tick tries
    again; results may lag by up to one interval.
    """

    def __init__(
        self,
        client: PortalClient,
        on_update: Callable[[List[LeaveRequest]], Awaitable[None]],
        interval: float = settings.POLL_INTERVAL_SECONDS,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.client = client
        self.on_update = on_update
        self.interval = interval
        self.on_error = on_error
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def refresh(self) -> List[LeaveRequest]:
        requests = await self.client.approval_queue()
        await self.on_update(requests)
        return requests

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except (LeavePortalError, httpx.HTTPError) as exc:
                logger.warning("Approval queue refresh failed: %s", exc)
                self._report(exc)
            except Exception as exc:
                logger.exception("Approval queue refresh failed unexpectedly")
                self._report(exc)
            await asyncio.sleep(self.interval)

    def _report(self, exc: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(exc)
        except Exception:
            logger.exception("Approval poller error handler failed")
