"""
Pydantic schemas for the three mirrored collections.

Remote documents keep the client's camelCase field names (``roomId``,
``isActive``, ...); the models expose snake_case attributes through aliases.
``*Patch`` models carry only the fields a caller sets and are what the
dispatcher writes with merge semantics.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, validator

logger = logging.getLogger(__name__)


class StudentStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    BLOCKED = "BLOCKED"


def parse_status(value: Any, default: StudentStatus = StudentStatus.NOT_STARTED) -> StudentStatus:
    """Case-insensitive status lookup; anything unrecognized becomes ``default``."""
    if isinstance(value, StudentStatus):
        return value
    text = str(value or "").strip().upper()
    try:
        return StudentStatus(text)
    except ValueError:
        return default


class DocumentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_document(self) -> Dict[str, Any]:
        """Remote document form with only the fields that were set."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


# Mirrored entities

class Student(DocumentModel):
    nis: str
    name: str = ""
    class_name: str = Field(default="", alias="class")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    password: str = ""
    status: StudentStatus = StudentStatus.NOT_STARTED
    violations: int = 0

    @validator("status", pre=True)
    def coerce_status(cls, v):
        return parse_status(v)

    @validator("nis", "class_name", pre=True)
    def stringify(cls, v):
        return "" if v is None else str(v)


class ExamSession(DocumentModel):
    id: str
    name: str = ""
    class_name: str = Field(default="", alias="class")
    pin: str = ""
    duration_minutes: int = Field(default=0, alias="durationMinutes")
    pdf_url: str = Field(default="", alias="pdfUrl")
    is_active: bool = Field(default=False, alias="isActive")
    questions: List[Any] = []

    @validator("id", "class_name", "pin", pre=True)
    def stringify(cls, v):
        return "" if v is None else str(v)


class Room(DocumentModel):
    id: str
    name: str = ""
    username: str = ""
    password: str = ""
    capacity: int = 0

    @validator("id", pre=True)
    def stringify(cls, v):
        return "" if v is None else str(v)


# Write payloads

class StudentFields(DocumentModel):
    """Partial student fields, e.g. the shared patch of a bulk update."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    class_name: Optional[str] = Field(default=None, alias="class")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    password: Optional[str] = None
    status: Optional[StudentStatus] = None
    violations: Optional[int] = Field(default=None, ge=0)

    @validator("status", pre=True)
    def uppercase_status(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class StudentPatch(StudentFields):
    nis: str = Field(..., min_length=1)


class SessionPatch(DocumentModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    class_name: Optional[str] = Field(default=None, alias="class")
    pin: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, alias="durationMinutes", ge=0)
    pdf_url: Optional[str] = Field(default=None, alias="pdfUrl")
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    questions: Optional[List[Any]] = None


class RoomPatch(DocumentModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=0)
