"""
API endpoints driving the session state machine.
"""

from fastapi import APIRouter, Depends, HTTPException, status
import logging

from examsy.core.runtime import ExamsyRuntime, get_runtime
from examsy.schemas.auth import AdminLoginRequest, ProctorLoginRequest, StudentLoginRequest
from examsy.services.login_checks import LoginRejected, check_admin, find_proctor_room, find_student_exam
from examsy.services.session_state import SessionTransitionError

logger = logging.getLogger(__name__)
router = APIRouter()


def _conflict(e: SessionTransitionError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def _rejected(e: LoginRejected) -> HTTPException:
    logger.info(f"Login rejected: {e.reason}")
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.reason)


@router.post("/admin")
async def login_admin(request: AdminLoginRequest, runtime: ExamsyRuntime = Depends(get_runtime)):
    try:
        check_admin(runtime.settings, request.username, request.password)
        state = runtime.state_machine.login_admin()
    except LoginRejected as e:
        raise _rejected(e)
    except SessionTransitionError as e:
        raise _conflict(e)
    return state.to_dict()


@router.post("/proctor")
async def login_proctor(request: ProctorLoginRequest, runtime: ExamsyRuntime = Depends(get_runtime)):
    try:
        room = find_proctor_room(runtime.mirror.rooms.values(), request.username, request.password)
        state = runtime.state_machine.login_proctor(room.id)
    except LoginRejected as e:
        raise _rejected(e)
    except SessionTransitionError as e:
        raise _conflict(e)
    return state.to_dict()


@router.post("/student")
async def login_student(request: StudentLoginRequest, runtime: ExamsyRuntime = Depends(get_runtime)):
    try:
        student, session = find_student_exam(
            runtime.mirror.students.documents,
            runtime.mirror.sessions.values(),
            request.nis,
            request.password,
            request.pin
        )
        success = await runtime.state_machine.login_student(student.nis, session.id)
    except LoginRejected as e:
        raise _rejected(e)
    except SessionTransitionError as e:
        raise _conflict(e)

    if not success:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not start the exam. Check the connection and try again."
        )
    return runtime.state_machine.state.to_dict()


@router.post("/finish")
async def finish_exam(runtime: ExamsyRuntime = Depends(get_runtime)):
    try:
        stored = await runtime.state_machine.finish_exam()
    except SessionTransitionError as e:
        raise _conflict(e)
    return {"stored": stored, "session": runtime.state_machine.state.to_dict()}


@router.post("/violation")
async def report_violation(runtime: ExamsyRuntime = Depends(get_runtime)):
    try:
        stored = await runtime.state_machine.report_violation()
    except SessionTransitionError as e:
        raise _conflict(e)
    return {"stored": stored}


@router.post("/logout")
async def logout(runtime: ExamsyRuntime = Depends(get_runtime)):
    try:
        state = runtime.state_machine.logout()
    except SessionTransitionError as e:
        raise _conflict(e)
    return state.to_dict()
