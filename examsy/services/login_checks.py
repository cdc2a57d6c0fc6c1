"""
Client-side credential comparisons for the three login forms.

These only compare what the user typed with mirrored data; nothing here is an
access control boundary.
"""

from typing import Iterable, Tuple

from ..core.config import Settings
from ..schemas.exam import ExamSession, Room, Student, StudentStatus


class LoginRejected(Exception):
    """Raised when typed credentials do not match."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def check_admin(config: Settings, username: str, password: str) -> None:
    if username.strip() != config.ADMIN_USERNAME or password != config.ADMIN_PASSWORD:
        raise LoginRejected("Invalid admin username or password")


def find_proctor_room(rooms: Iterable[Room], username: str, password: str) -> Room:
    username = username.strip()
    for room in rooms:
        if room.username and room.username == username and room.password == password:
            return room
    raise LoginRejected("Invalid proctor username or password")


def find_student_exam(
    students,
    sessions: Iterable[ExamSession],
    nis: str,
    password: str,
    pin: str
) -> Tuple[Student, ExamSession]:
    """Match a student login against the mirrored students and active sessions.

    ``students`` is a mapping keyed by nis. The session must be active, carry
    the typed pin and belong to the student's class.
    """
    student = students.get(nis.strip())
    if student is None or student.password != password:
        raise LoginRejected("Invalid NIS or password")
    if student.status == StudentStatus.BLOCKED:
        raise LoginRejected("Student is blocked")
    if student.status == StudentStatus.FINISHED:
        raise LoginRejected("Student has already finished the exam")

    pin = pin.strip().upper()
    for session in sessions:
        if (session.is_active
                and session.pin.strip().upper() == pin
                and session.class_name.strip() == student.class_name.strip()):
            return student, session

    raise LoginRejected("No active session for this PIN and class")
