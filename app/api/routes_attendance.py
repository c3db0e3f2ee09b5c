"""
Attendance session routes - manual and QR check-in for signed-in staff
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.schemas.attendance import RescanRequest, SessionCreate
from app.services.attendance_service import AttendanceSession, session_manager
from app.services.auth_service import AuthSession
from app.services.repositories import AttendanceRepository, get_repository
from app.utils.responses import success_response
from app.utils.security import get_current_session

router = APIRouter()


def _repo(db: Session = Depends(get_db)) -> AttendanceRepository:
    return get_repository(db)


def _owned_session(session_id: str, user: AuthSession = Depends(get_current_session)) -> AttendanceSession:
    return session_manager.get(session_id, owner_id=user.token)


@router.post("/sessions")
async def open_session(
    session_data: SessionCreate,
    repo: AttendanceRepository = Depends(_repo),
    user: AuthSession = Depends(get_current_session)
):
    """Open a session for an event, or for the group encoded in a QR scan"""
    attendance = session_manager.open(user.operator_name, owner_id=user.token)
    attendance.load(repo, event_id=session_data.event_id, qr_data=session_data.qr_data)
    return success_response(
        message="Attendance session opened",
        data=attendance.to_dict(),
        status_code=201
    )


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, search: Optional[str] = None, attendance: AttendanceSession = Depends(_owned_session)):
    """Current roster view; search filters manual sessions only"""
    return success_response(message="Attendance session", data=attendance.to_dict(search))


@router.post("/sessions/{session_id}/toggle/{attendee_id}")
async def toggle_attendee(attendee_id: str, attendance: AttendanceSession = Depends(_owned_session)):
    """Flip one attendee's flag locally"""
    attendance.toggle(attendee_id)
    return success_response(message="Attendance toggled", data=attendance.to_dict())


@router.post("/sessions/{session_id}/mark-all")
async def mark_all(attendance: AttendanceSession = Depends(_owned_session)):
    """Mark every loaded attendee present locally"""
    attendance.mark_all_present()
    return success_response(message="All attendees marked present", data=attendance.to_dict())


@router.post("/sessions/{session_id}/clear-all")
async def clear_all(attendance: AttendanceSession = Depends(_owned_session)):
    """Mark every loaded attendee absent locally"""
    attendance.clear_all()
    return success_response(message="All attendees cleared", data=attendance.to_dict())


@router.post("/sessions/{session_id}/save")
async def save_session(attendance: AttendanceSession = Depends(_owned_session), repo: AttendanceRepository = Depends(_repo)):
    """Persist the changes made since the last save"""
    changes = attendance.save(repo)
    if changes.is_empty:
        message = "No changes to save"
    else:
        message = f"Attendance saved: {len(changes.present_ids)} present, {len(changes.absent_ids)} absent"
    return success_response(message=message, data=attendance.to_dict())


@router.post("/sessions/{session_id}/rescan")
async def rescan(
    rescan_data: RescanRequest,
    attendance: AttendanceSession = Depends(_owned_session),
    repo: AttendanceRepository = Depends(_repo)
):
    """Load a different group from a new QR scan"""
    attendance.rescan(repo, rescan_data.qr_data)
    return success_response(message="Attendance session reloaded", data=attendance.to_dict())


@router.post("/sessions/{session_id}/reload")
async def reload(attendance: AttendanceSession = Depends(_owned_session), repo: AttendanceRepository = Depends(_repo)):
    """Retry loading after a failure"""
    attendance.reload(repo)
    return success_response(message="Attendance session reloaded", data=attendance.to_dict())


@router.delete("/sessions/{session_id}")
async def close_session(attendance: AttendanceSession = Depends(_owned_session)):
    """Close the session, discarding unsaved changes"""
    session_manager.close(attendance.id)
    return success_response(message="Attendance session closed", data={"id": attendance.id})
