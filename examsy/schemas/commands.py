"""
Dispatcher command vocabulary.

The ten mutation commands form a tagged union discriminated by ``command``.
This is the whole write surface of the client: every change to the remote
store is one of these.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

from .exam import RoomPatch, SessionPatch, StudentFields, StudentPatch


class CommandType(str, Enum):
    ADD_STUDENT = "ADD_STUDENT"
    UPDATE_STUDENT = "UPDATE_STUDENT"
    DELETE_STUDENT = "DELETE_STUDENT"
    BULK_UPDATE_STUDENTS = "BULK_UPDATE_STUDENTS"
    ADD_SESSION = "ADD_SESSION"
    UPDATE_SESSION = "UPDATE_SESSION"
    DELETE_SESSION = "DELETE_SESSION"
    ADD_ROOM = "ADD_ROOM"
    UPDATE_ROOM = "UPDATE_ROOM"
    DELETE_ROOM = "DELETE_ROOM"


# Payloads

class StudentKey(BaseModel):
    nis: str = Field(..., min_length=1)


class EntityKey(BaseModel):
    id: str = Field(..., min_length=1)


class BulkStudentUpdate(BaseModel):
    """The same ``updates`` patch applied to every selected student."""
    selected_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("selectedIds", "selectedNis", "selected_ids"),
        serialization_alias="selectedIds"
    )
    updates: StudentFields

    model_config = ConfigDict(populate_by_name=True)


# Commands

class AddStudent(BaseModel):
    command: Literal["ADD_STUDENT"] = "ADD_STUDENT"
    payload: StudentPatch


class UpdateStudent(BaseModel):
    command: Literal["UPDATE_STUDENT"] = "UPDATE_STUDENT"
    payload: StudentPatch


class DeleteStudent(BaseModel):
    command: Literal["DELETE_STUDENT"] = "DELETE_STUDENT"
    payload: StudentKey


class BulkUpdateStudents(BaseModel):
    command: Literal["BULK_UPDATE_STUDENTS"] = "BULK_UPDATE_STUDENTS"
    payload: BulkStudentUpdate


class AddSession(BaseModel):
    command: Literal["ADD_SESSION"] = "ADD_SESSION"
    payload: SessionPatch


class UpdateSession(BaseModel):
    command: Literal["UPDATE_SESSION"] = "UPDATE_SESSION"
    payload: SessionPatch


class DeleteSession(BaseModel):
    command: Literal["DELETE_SESSION"] = "DELETE_SESSION"
    payload: EntityKey


class AddRoom(BaseModel):
    command: Literal["ADD_ROOM"] = "ADD_ROOM"
    payload: RoomPatch


class UpdateRoom(BaseModel):
    command: Literal["UPDATE_ROOM"] = "UPDATE_ROOM"
    payload: RoomPatch


class DeleteRoom(BaseModel):
    command: Literal["DELETE_ROOM"] = "DELETE_ROOM"
    payload: EntityKey


Command = Annotated[
    Union[
        AddStudent, UpdateStudent, DeleteStudent, BulkUpdateStudents,
        AddSession, UpdateSession, DeleteSession,
        AddRoom, UpdateRoom, DeleteRoom,
    ],
    Field(discriminator="command")
]

command_adapter = TypeAdapter(Command)


def parse_command(action: str, payload: Dict[str, Any]) -> Command:
    """Build a typed command from the untyped ``(action, payload)`` form."""
    return command_adapter.validate_python({"command": action, "payload": payload})


class ActionRequest(BaseModel):
    action: str
    payload: Dict[str, Any] = {}
