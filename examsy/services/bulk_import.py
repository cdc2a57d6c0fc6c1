"""
Bulk student import from CSV text.

Column order: nis, nama, kelas, ruang, password, status. The first line is a
header. Rows are dispatched one at a time as ADD_STUDENT so a failing row never
stops the rest of the import.
"""

import csv
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..core.config import Settings, settings as default_settings
from ..schemas.commands import AddStudent
from ..schemas.exam import Room, StudentPatch, parse_status
from .sync.dispatcher import ActionDispatcher

logger = logging.getLogger(__name__)

BOM = "\ufeff"


@dataclass
class ImportParseResult:
    records: List[StudentPatch] = field(default_factory=list)
    skipped_lines: List[int] = field(default_factory=list)


@dataclass
class ImportResult:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "failed_ids": self.failed_ids,
        }


def resolve_room_id(rooms: Iterable[Room], room_name: str) -> str:
    """Room id for a case-insensitive exact name match, or "" when none matches."""
    wanted = room_name.strip().upper()
    if not wanted:
        return ""
    for room in rooms:
        if (room.name or "").strip().upper() == wanted:
            return room.id
    return ""


def _split_row(line: str) -> List[str]:
    """Trimmed fields of one line; an unbalanced quote never reaches past it."""
    try:
        row = next(csv.reader([line]), [])
    except csv.Error as e:
        logger.warning(f"Unreadable import line {line!r}: {e}")
        return []
    return [item.strip() for item in row]


def parse_student_csv(
    text: str,
    rooms: Iterable[Room],
    config: Optional[Settings] = None
) -> ImportParseResult:
    """Turn CSV text into student records, skipping rows without nis and name."""
    config = config or default_settings
    rooms = list(rooms)
    result = ImportParseResult()

    if text.startswith(BOM):
        text = text[len(BOM):]

    lines = [
        (number, line)
        for number, line in enumerate(text.splitlines(), start=1)
        if line.strip()
    ]

    # First non-blank line is the header
    for number, line in lines[1:]:
        row = _split_row(line)
        if len(row) < 2 or not (row[0] and row[1]):
            result.skipped_lines.append(number)
            continue

        nis, name, class_name, room_name, password, status = (row + [""] * 6)[:6]
        result.records.append(StudentPatch(
            nis=nis,
            name=name.upper(),
            class_name=class_name or config.DEFAULT_STUDENT_CLASS,
            room_id=resolve_room_id(rooms, room_name),
            password=password or config.DEFAULT_STUDENT_PASSWORD,
            status=parse_status(status),
        ))

    return result


async def import_students(
    text: str,
    dispatcher: ActionDispatcher,
    rooms: Iterable[Room],
    config: Optional[Settings] = None
) -> ImportResult:
    """Parse and add every valid row, one dispatch at a time."""
    parsed = parse_student_csv(text, rooms, config)
    result = ImportResult(skipped=len(parsed.skipped_lines))

    for record in parsed.records:
        if await dispatcher.dispatch(AddStudent(payload=record)):
            result.succeeded += 1
        else:
            result.failed += 1
            result.failed_ids.append(record.nis)

    logger.info(
        f"Import finished: {result.succeeded} added, {result.failed} failed, {result.skipped} skipped"
    )
    return result
