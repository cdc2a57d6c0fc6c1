from pydantic import BaseModel, ConfigDict, Field, validator
from typing import Optional
from enum import Enum


class CredentialRole(str, Enum):
    """Roles that survive a restart through the local credential."""
    ADMIN = "ADMIN"
    PROCTOR = "PROCTOR"


class SessionCredential(BaseModel):
    """Local session credential persisted outside the remote store."""
    role: CredentialRole
    room_id: Optional[str] = Field(default=None, alias="roomId")

    model_config = ConfigDict(populate_by_name=True)

    @validator("room_id", always=True)
    def require_room_for_proctor(cls, v, values):
        if values.get("role") == CredentialRole.PROCTOR and not v:
            raise ValueError("PROCTOR credential requires a roomId")
        return v

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class AdminLoginRequest(BaseModel):
    username: str
    password: str


class ProctorLoginRequest(BaseModel):
    username: str
    password: str


class StudentLoginRequest(BaseModel):
    nis: str
    password: str
    pin: str
