import enum
from typing import Optional

from pydantic import BaseModel


class UserRole(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    HOD = "hod"


class UserProfile(BaseModel):
    """
    Profile document from the users collection.
    """
    id: str
    name: str
    email: str
    role: UserRole
    department: str
    year: Optional[str] = None
    sem: Optional[str] = None
    div: Optional[str] = None
    rollNumber: Optional[str] = None
    isActive: bool = True
