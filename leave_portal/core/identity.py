import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from leave_portal.core.gateway import PersistenceGateway
from leave_portal.schemas.user import UserProfile

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    """
    Authenticated user for the duration of one unit of work. Passed
    explicitly to the workflow and query layers.
    """
    user: UserProfile
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_id(self) -> str:
        return self.user.id


class IdentityProvider:
    """
    Maps an already-authenticated user id to the profile stored in the users
    collection. Credential checks happen upstream and are not modelled here.
    """

    def __init__(self, gateway: PersistenceGateway, collection: str) -> None:
        self.gateway = gateway
        self.collection = collection
        self._sessions: Dict[str, UserSession] = {}

    async def current_user(self, user_id: str) -> Optional[UserProfile]:
        doc = await self.gateway.get(self.collection, user_id)
        if doc is None:
            return None
        profile = UserProfile.model_validate(doc)
        if not profile.isActive:
            logger.info("Inactive user %s refused", user_id)
            return None
        return profile

    async def register(self, profile: UserProfile) -> UserProfile:
        await self.gateway.create(self.collection, profile.model_dump(mode="json"))
        return profile

    def start_session(self, user: UserProfile) -> UserSession:
        session = UserSession(user=user)
        self._sessions[session.session_id] = session
        logger.debug("Session %s started for user %s", session.session_id, user.id)
        return session

    def end_session(self, session: UserSession) -> None:
        if self._sessions.pop(session.session_id, None) is not None:
            logger.debug("Session %s ended for user %s", session.session_id, session.user_id)

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)
