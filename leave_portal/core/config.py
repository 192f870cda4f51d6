from typing import Dict, List, Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB
    MONGODB_URI: str = "mongodb://mongodb:27017"
    MONGODB_DB_NAME: str = "portal"
    LEAVE_COLLECTION: str = "leaveRequests"
    USERS_COLLECTION: str = "users"

    # "memory" keeps everything in-process (local runs, tests)
    STORAGE_BACKEND: Literal["mongo", "memory"] = "mongo"
    GATEWAY_TIMEOUT_SECONDS: float = 5.0

    # Approval workflow
    APPROVAL_FLOW: List[str] = ["Teacher", "HOD"]
    ROLE_LEVELS: Dict[str, str] = {"teacher": "Teacher", "hod": "HOD"}
    RETURN_POLICY: Literal["resubmit", "terminal"] = "resubmit"

    # Client polling / notifications
    PORTAL_BASE_URL: str = "http://leave-portal:8000"
    POLL_INTERVAL_SECONDS: float = 30.0
    NOTIFICATION_LIMIT: int = 500

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
