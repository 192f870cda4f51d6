import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional, Set, Tuple

from leave_portal.schemas.notification import Notification


class NotificationSink:
    """
    In-memory notification list backing the badge/list in the portal.
    Nothing here is persisted; the oldest entries fall off past ``limit``.

    Read state is kept per (notification, user), so a broadcast entry read
    by one user stays unread for everyone else.
    """

    def __init__(self, limit: int = 500) -> None:
        self._items: Deque[Notification] = deque(maxlen=limit)
        self._read: Set[Tuple[str, str]] = set()

    def add_notification(
        self,
        message: str,
        user_id: Optional[str] = None,
        kind: str = "info",
    ) -> Notification:
        if len(self._items) == self._items.maxlen:
            dropped = self._items[0].id
            self._read = {key for key in self._read if key[0] != dropped}
        item = Notification(
            id=uuid.uuid4().hex,
            userId=user_id,
            message=message,
            kind=kind,
            createdAt=datetime.now(timezone.utc),
        )
        self._items.append(item)
        return item

    def _visible(self, user_id: str) -> List[Notification]:
        return [n for n in self._items if n.userId in (None, user_id)]

    def _as_seen_by(self, item: Notification, user_id: str) -> Notification:
        return item.model_copy(update={"read": (item.id, user_id) in self._read})

    def list_for(self, user_id: str) -> List[Notification]:
        return [self._as_seen_by(n, user_id) for n in reversed(self._visible(user_id))]

    def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        for item in self._visible(user_id):
            if item.id == notification_id:
                self._read.add((item.id, user_id))
                return self._as_seen_by(item, user_id)
        return None

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self._visible(user_id) if (n.id, user_id) not in self._read)
