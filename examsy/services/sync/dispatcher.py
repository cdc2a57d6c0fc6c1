"""
Action Dispatcher

Maps the closed command vocabulary onto remote store calls:
- ADD/UPDATE commands are merge writes keyed by the entity id
- DELETE commands are idempotent deletes
- BULK_UPDATE_STUDENTS is one atomic batch patch
- Every outcome is reported as a boolean; failures never propagate

The dispatcher never touches local state. Results become visible through the
next mirror snapshot.
"""

import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import ValidationError

from ...core.config import Settings, settings as default_settings
from ...core.store import RemoteStore, StoreError
from ...schemas.commands import (
    AddRoom, AddSession, AddStudent, BulkUpdateStudents, Command, CommandType,
    DeleteRoom, DeleteSession, DeleteStudent, UpdateRoom, UpdateSession,
    UpdateStudent, parse_command
)

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Single entry point for every mutation of the remote store."""

    def __init__(self, store: RemoteStore, config: Optional[Settings] = None):
        config = config or default_settings
        self.store = store
        self.students_collection = config.STUDENTS_COLLECTION
        self.sessions_collection = config.SESSIONS_COLLECTION
        self.rooms_collection = config.ROOMS_COLLECTION
        self._in_flight = 0
        # Shape of StoreError.to_dict() for the most recent store failure
        self.last_error: Optional[Dict[str, Any]] = None
        self._handlers: Dict[CommandType, Callable[[Any], Awaitable[bool]]] = {
            CommandType.ADD_STUDENT: self._save_student,
            CommandType.UPDATE_STUDENT: self._save_student,
            CommandType.DELETE_STUDENT: self._delete_student,
            CommandType.BULK_UPDATE_STUDENTS: self._bulk_update_students,
            CommandType.ADD_SESSION: self._save_session,
            CommandType.UPDATE_SESSION: self._save_session,
            CommandType.DELETE_SESSION: self._delete_session,
            CommandType.ADD_ROOM: self._save_room,
            CommandType.UPDATE_ROOM: self._save_room,
            CommandType.DELETE_ROOM: self._delete_room,
        }

    @property
    def is_processing(self) -> bool:
        """True while any dispatch is outstanding.

        Callers use it to disable further mutation triggers; the dispatcher
        itself does not queue or reject concurrent calls.
        """
        return self._in_flight > 0

    @contextmanager
    def _processing(self):
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    async def dispatch(self, command: Command) -> bool:
        with self._processing():
            return await self._run(command)

    async def dispatch_raw(self, action: str, payload: Dict[str, Any]) -> bool:
        """Dispatch the untyped ``(action, payload)`` form sent by the UI."""
        with self._processing():
            try:
                command = parse_command(action, payload)
            except ValidationError as e:
                logger.warning(f"Action not recognized or malformed: {action}: {e.error_count()} errors")
                return False
            return await self._run(command)

    async def _run(self, command: Command) -> bool:
        try:
            handler = self._handlers[CommandType(command.command)]
        except (AttributeError, KeyError, ValueError):
            logger.warning(f"Action not recognized: {command!r}")
            return False

        try:
            success = await handler(command)
        except StoreError as e:
            self.last_error = e.to_dict()
            logger.error(f"Store action {command.command} failed: {self.last_error}")
            return False
        except Exception as e:
            logger.error(f"Store action {command.command} failed: {e}")
            return False

        if success:
            self.last_error = None
        return success

    # Students

    async def _save_student(self, command: Union[AddStudent, UpdateStudent]) -> bool:
        payload = command.payload
        await self.store.set_merge(self.students_collection, payload.nis, payload.to_document())
        return True

    async def _delete_student(self, command: DeleteStudent) -> bool:
        await self.store.delete(self.students_collection, command.payload.nis)
        return True

    async def _bulk_update_students(self, command: BulkUpdateStudents) -> bool:
        updates = command.payload.updates.to_document()
        if not updates:
            logger.warning("Bulk update without any field to change")
            return False

        entries = [(nis, updates) for nis in command.payload.selected_ids]
        if not entries:
            return True

        await self.store.batch_update(self.students_collection, entries)
        logger.info(f"Bulk updated {len(entries)} students: {sorted(updates)}")
        return True

    # Sessions

    async def _save_session(self, command: Union[AddSession, UpdateSession]) -> bool:
        payload = command.payload
        await self.store.set_merge(self.sessions_collection, payload.id, payload.to_document())
        return True

    async def _delete_session(self, command: DeleteSession) -> bool:
        await self.store.delete(self.sessions_collection, command.payload.id)
        return True

    # Rooms

    async def _save_room(self, command: Union[AddRoom, UpdateRoom]) -> bool:
        payload = command.payload
        await self.store.set_merge(self.rooms_collection, payload.id, payload.to_document())
        return True

    async def _delete_room(self, command: DeleteRoom) -> bool:
        await self.store.delete(self.rooms_collection, command.payload.id)
        return True
