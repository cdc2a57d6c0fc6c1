"""
Session state machine for the exam client.

States: ANONYMOUS, STUDENT_EXAM(student, session), ADMIN, PROCTOR(room).
Inputs are the persisted local credential, dispatcher outcomes and room
snapshots from the live mirror. The local credential is written only here:
on admin/proctor login, on logout and when a proctor's room disappears.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..core.credentials import SessionContext
from ..schemas.auth import CredentialRole, SessionCredential
from ..schemas.commands import UpdateStudent
from ..schemas.exam import StudentPatch, StudentStatus
from .sync.dispatcher import ActionDispatcher
from .sync.live_mirror import LiveMirror, MirrorSnapshot

logger = logging.getLogger(__name__)


class ViewState(str, Enum):
    ANONYMOUS = "ANONYMOUS"
    STUDENT_EXAM = "STUDENT_EXAM"
    ADMIN = "ADMIN"
    PROCTOR = "PROCTOR"


@dataclass(frozen=True)
class SessionState:
    view: ViewState
    student_id: Optional[str] = None
    session_id: Optional[str] = None
    room_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "view": self.view.value,
            "student_id": self.student_id,
            "session_id": self.session_id,
            "room_id": self.room_id,
        }


ANONYMOUS = SessionState(ViewState.ANONYMOUS)

StateListener = Callable[[SessionState], None]


class SessionTransitionError(Exception):
    """Raised when an action is not allowed from the current state."""

    def __init__(self, action: str, state: SessionState):
        super().__init__(f"Cannot {action} from {state.view.value}")
        self.action = action
        self.state = state


class SessionStateMachine:
    """Decides the active role from the local credential and remote data."""

    def __init__(self, dispatcher: ActionDispatcher, mirror: LiveMirror, context: SessionContext):
        self.dispatcher = dispatcher
        self.mirror = mirror
        self.context = context
        self._state = ANONYMOUS
        self._listeners: List[StateListener] = []
        self._remove_observer = mirror.add_observer(self._on_snapshot)

    @property
    def state(self) -> SessionState:
        return self._state

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def close(self) -> None:
        """Stop following mirror snapshots."""
        self._remove_observer()

    def initialize(self) -> SessionState:
        """Refine the initial ANONYMOUS state from the persisted credential."""
        credential = self.context.load()
        if credential is None:
            return self._state

        if credential.role == CredentialRole.ADMIN:
            self._set_state(SessionState(ViewState.ADMIN))
        elif credential.role == CredentialRole.PROCTOR:
            self._set_state(SessionState(ViewState.PROCTOR, room_id=credential.room_id))
            if self.mirror.rooms.loaded:
                self._heal_proctor(self.mirror.rooms.documents)

        return self._state

    # Transitions

    def login_admin(self) -> SessionState:
        self._require(ViewState.ANONYMOUS, "log in as admin")
        self.context.save(SessionCredential(role=CredentialRole.ADMIN))
        self._set_state(SessionState(ViewState.ADMIN))
        return self._state

    def login_proctor(self, room_id: str) -> SessionState:
        self._require(ViewState.ANONYMOUS, "log in as proctor")
        if self.mirror.rooms.loaded and room_id not in self.mirror.rooms.documents:
            raise SessionTransitionError(f"log in as proctor of unknown room {room_id}", self._state)

        self.context.save(SessionCredential(role=CredentialRole.PROCTOR, room_id=room_id))
        self._set_state(SessionState(ViewState.PROCTOR, room_id=room_id))
        return self._state

    async def login_student(self, student_id: str, session_id: str) -> bool:
        """Mark the student IN_PROGRESS; enter the exam only if that write succeeded."""
        self._require(ViewState.ANONYMOUS, "start an exam")

        success = await self.dispatcher.dispatch(UpdateStudent(
            payload=StudentPatch(nis=student_id, status=StudentStatus.IN_PROGRESS)
        ))
        if not success:
            logger.warning(f"Student {student_id} login failed: status update was not stored")
            return False

        if self._state.view != ViewState.ANONYMOUS:
            logger.warning(f"Student {student_id} login ignored: state changed to {self._state.view.value}")
            return False

        self._set_state(SessionState(ViewState.STUDENT_EXAM, student_id=student_id, session_id=session_id))
        return True

    async def finish_exam(self) -> bool:
        """Mark the student FINISHED and leave the exam whatever the write outcome."""
        self._require(ViewState.STUDENT_EXAM, "finish an exam")
        student_id = self._state.student_id

        try:
            success = await self.dispatcher.dispatch(UpdateStudent(
                payload=StudentPatch(nis=student_id, status=StudentStatus.FINISHED, violations=0)
            ))
        finally:
            self._set_state(ANONYMOUS)

        if not success:
            logger.warning(f"Student {student_id} left the exam but the FINISHED status was not stored")
        return success

    async def report_violation(self) -> bool:
        """Increment the current student's violation counter."""
        self._require(ViewState.STUDENT_EXAM, "report a violation")
        student = self.mirror.students.get(self._state.student_id)
        violations = student.violations if student else 0

        return await self.dispatcher.dispatch(UpdateStudent(
            payload=StudentPatch(nis=self._state.student_id, violations=violations + 1)
        ))

    def logout(self) -> SessionState:
        if self._state.view == ViewState.STUDENT_EXAM:
            raise SessionTransitionError("log out", self._state)

        self.context.clear()
        self._set_state(ANONYMOUS)
        return self._state

    # Internals

    def _require(self, view: ViewState, action: str) -> None:
        if self._state.view != view:
            raise SessionTransitionError(action, self._state)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info(f"Session state {previous.view.value} -> {state.view.value}")

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Session state listener failed: {e}")

    def _on_snapshot(self, snapshot: MirrorSnapshot) -> None:
        if snapshot.collection == self.mirror.rooms.collection:
            self._heal_proctor(snapshot.documents)

    def _heal_proctor(self, rooms) -> None:
        if self._state.view == ViewState.PROCTOR and self._state.room_id not in rooms:
            logger.warning(f"Room {self._state.room_id} no longer exists, dropping proctor session")
            self.context.clear()
            self._set_state(ANONYMOUS)
