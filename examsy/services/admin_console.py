"""
Admin dashboard helpers built on the mirror and the dispatcher.
"""

import csv
import io
import logging
import time
from typing import Iterable, List, Mapping, Optional

from ..schemas.commands import BulkStudentUpdate, BulkUpdateStudents, DeleteStudent, StudentKey, UpdateSession
from ..schemas.exam import ExamSession, Room, SessionPatch, Student, StudentFields, StudentStatus
from .bulk_import import BOM
from .sync.dispatcher import ActionDispatcher

logger = logging.getLogger(__name__)

ALL_ROOMS = "ALL"
KEEP = "KEEP"
UNASSIGNED_ROOM_LABEL = "-"

TEMPLATE_HEADER = ["NIS", "NAMA", "KELAS", "RUANG", "PASSWORD", "STATUS"]
TEMPLATE_ROWS = [
    ["123001", "AHMAD JUNAIDI", "7", "RUANG 01", "pass123", StudentStatus.NOT_STARTED.value],
    ["123002", "SITI AMINAH", "8", "RUANG 02", "pass456", StudentStatus.NOT_STARTED.value],
    ["123003", "BUDI SETIAWAN", "9", "", "user789", StudentStatus.NOT_STARTED.value],
]


def new_entity_id() -> str:
    """Millisecond timestamp token used as the id of a new session or room."""
    return str(int(time.time() * 1000))


def filter_students(
    students: Iterable[Student],
    search: str = "",
    room_id: str = ALL_ROOMS
) -> List[Student]:
    """Students whose name or nis matches ``search`` and who sit in ``room_id``."""
    term = (search or "").strip().lower()
    wanted_room = str(room_id or ALL_ROOMS).strip()

    matches = []
    for student in students:
        matches_search = term in (student.name or "").lower() or term in str(student.nis)
        matches_room = wanted_room == ALL_ROOMS or str(student.room_id or "").strip() == wanted_room
        if matches_search and matches_room:
            matches.append(student)
    return matches


def room_label(rooms: Mapping[str, Room], room_id: Optional[str], fallback: str = UNASSIGNED_ROOM_LABEL) -> str:
    """Name of the referenced room, or ``fallback`` when it is empty or gone."""
    room = rooms.get(room_id) if room_id else None
    return room.name if room is not None and room.name else fallback


def build_bulk_updates(room_id: str = KEEP, status: str = KEEP) -> StudentFields:
    """The shared patch for a bulk update; KEEP leaves a field untouched."""
    fields = {}
    if room_id != KEEP:
        fields["room_id"] = room_id
    if status != KEEP:
        fields["status"] = status
    return StudentFields(**fields)


async def bulk_update_students(
    dispatcher: ActionDispatcher,
    selected_ids: List[str],
    room_id: str = KEEP,
    status: str = KEEP
) -> bool:
    updates = build_bulk_updates(room_id, status)
    if not updates.to_document():
        return False
    return await dispatcher.dispatch(BulkUpdateStudents(
        payload=BulkStudentUpdate(selected_ids=selected_ids, updates=updates)
    ))


async def bulk_delete_students(dispatcher: ActionDispatcher, selected_ids: List[str]) -> int:
    """Delete students one by one; returns how many deletes succeeded."""
    deleted = 0
    for nis in selected_ids:
        if await dispatcher.dispatch(DeleteStudent(payload=StudentKey(nis=nis))):
            deleted += 1

    logger.info(f"Deleted {deleted} of {len(selected_ids)} selected students")
    return deleted


async def toggle_session_active(dispatcher: ActionDispatcher, session: ExamSession) -> bool:
    return await dispatcher.dispatch(UpdateSession(
        payload=SessionPatch(id=session.id, is_active=not session.is_active)
    ))


def build_import_template() -> str:
    """CSV template for the student import, with a BOM for spreadsheet apps."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADER)
    writer.writerows(TEMPLATE_ROWS)
    return BOM + output.getvalue()
