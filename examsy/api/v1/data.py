"""
API endpoints for mirrored data, dispatched actions and bulk student tools.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Any, Dict, List
import logging

from examsy.core.runtime import ExamsyRuntime, get_runtime
from examsy.schemas.commands import ActionRequest
from examsy.services.admin_console import (
    ALL_ROOMS, bulk_delete_students, build_import_template, filter_students,
    new_entity_id, room_label, toggle_session_active
)
from examsy.services.bulk_import import import_students
from examsy.websocket.live_updates import serialize_documents

logger = logging.getLogger(__name__)
router = APIRouter()


class BulkDeleteRequest(BaseModel):
    selected_ids: List[str]


@router.get("/state")
async def get_state(runtime: ExamsyRuntime = Depends(get_runtime)):
    """Session state, loading and processing flags for the UI."""
    return {
        "session": runtime.state_machine.state.to_dict(),
        "initial_load_complete": runtime.mirror.initial_load_complete,
        "is_processing": runtime.dispatcher.is_processing,
        "last_error": runtime.dispatcher.last_error,
    }


@router.get("/students")
async def list_students(
    search: str = Query(default=""),
    room: str = Query(default=ALL_ROOMS),
    runtime: ExamsyRuntime = Depends(get_runtime)
):
    students = filter_students(runtime.mirror.students.values(), search, room)
    rooms = runtime.mirror.rooms.documents
    return [
        {**student.model_dump(by_alias=True, mode="json"), "roomName": room_label(rooms, student.room_id)}
        for student in students
    ]


@router.get("/sessions")
async def list_sessions(runtime: ExamsyRuntime = Depends(get_runtime)):
    return serialize_documents(runtime.mirror.sessions.documents)


@router.get("/rooms")
async def list_rooms(runtime: ExamsyRuntime = Depends(get_runtime)):
    return serialize_documents(runtime.mirror.rooms.documents)


@router.post("/sessions")
async def create_session(payload: Dict[str, Any], runtime: ExamsyRuntime = Depends(get_runtime)):
    """Add a session under a fresh timestamp id unless one is given."""
    session_id = str(payload.get("id") or new_entity_id())
    success = await runtime.dispatcher.dispatch_raw("ADD_SESSION", {**payload, "id": session_id})
    return {"success": success, "id": session_id}


@router.post("/sessions/{session_id}/toggle")
async def toggle_session(session_id: str, runtime: ExamsyRuntime = Depends(get_runtime)):
    session = runtime.mirror.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    success = await toggle_session_active(runtime.dispatcher, session)
    return {"success": success, "is_active": not session.is_active if success else session.is_active}


@router.post("/rooms")
async def create_room(payload: Dict[str, Any], runtime: ExamsyRuntime = Depends(get_runtime)):
    """Add a room under a fresh timestamp id unless one is given."""
    room_id = str(payload.get("id") or new_entity_id())
    success = await runtime.dispatcher.dispatch_raw("ADD_ROOM", {**payload, "id": room_id})
    return {"success": success, "id": room_id}


@router.post("/actions")
async def dispatch_action(request: ActionRequest, runtime: ExamsyRuntime = Depends(get_runtime)):
    """Run one command of the dispatcher vocabulary; never fails with an error status."""
    success = await runtime.dispatcher.dispatch_raw(request.action, request.payload)
    return {"success": success}


@router.post("/students/import")
async def import_students_csv(request: Request, runtime: ExamsyRuntime = Depends(get_runtime)):
    """Import students from a CSV request body."""
    try:
        text = (await request.body()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")

    result = await import_students(
        text, runtime.dispatcher, runtime.mirror.rooms.values(), runtime.settings
    )
    return result.to_dict()


@router.get("/students/import-template")
async def download_import_template():
    return Response(
        content=build_import_template().encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=template_siswa_examsy.csv"}
    )


@router.post("/students/bulk-delete")
async def bulk_delete(request: BulkDeleteRequest, runtime: ExamsyRuntime = Depends(get_runtime)):
    deleted = await bulk_delete_students(runtime.dispatcher, request.selected_ids)
    return {"deleted": deleted, "requested": len(request.selected_ids)}
