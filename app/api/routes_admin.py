"""
Admin API routes - requires an administrator session
"""

import logging
import re

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.core.errors import AttendeeNotFound, EventNotFound, ImportValidationError
from app.schemas.attendee import AttendeeCreate, AttendeeUpdate, EmailRequest, GroupCreate
from app.schemas.auth import RoleUpdate
from app.schemas.event import EventCreate, EventUpdate
from app.services.auth_service import AuthSession
from app.services.email_service import GraphEmailService
from app.services.group_service import AttendeeService, GroupService
from app.services.qr_service import QRService, QrPayload
from app.services.repositories import AttendanceRepository, get_repository
from app.services.roster_service import RosterService
from app.utils.responses import success_response
from app.utils.security import auth_service, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


def _repo(db: Session = Depends(get_db)) -> AttendanceRepository:
    return get_repository(db)


def _get_event(repo: AttendanceRepository, event_id: str):
    event = repo.get_event(event_id)
    if not event:
        raise EventNotFound(event_id)
    return event


def _file_stem(name: str) -> str:
    return re.sub(r'[^A-Za-z0-9_-]+', '_', name).strip('_') or 'event'


# -------- events --------

@router.get("/events")
async def list_events(repo: AttendanceRepository = Depends(_repo)):
    """List events with attendance counts"""
    events = repo.list_events()
    return success_response(
        message="Events retrieved",
        data=[e.model_dump(mode="json") for e in events]
    )


@router.post("/events")
async def create_event(event_data: EventCreate, repo: AttendanceRepository = Depends(_repo)):
    """Create a new event"""
    event = repo.create_event(event_data)
    logger.info(f"Created event {event.id} '{event.name}'")
    return success_response(
        message="Event created successfully",
        data=event.model_dump(mode="json"),
        status_code=201
    )


@router.get("/events/{event_id}")
async def get_event_details(event_id: str, repo: AttendanceRepository = Depends(_repo)):
    """Get event information with statistics"""
    event = _get_event(repo, event_id)
    stats = repo.get_event_stats(event_id)
    return success_response(
        message="Event details retrieved",
        data={**event.model_dump(mode="json"), "stats": stats.model_dump()}
    )


@router.patch("/events/{event_id}")
async def update_event(event_id: str, event_update: EventUpdate, repo: AttendanceRepository = Depends(_repo)):
    """Update event information"""
    event = repo.update_event(event_id, event_update.model_dump(exclude_unset=True))
    if not event:
        raise EventNotFound(event_id)
    return success_response(message="Event updated successfully", data=event.model_dump(mode="json"))


@router.delete("/events/{event_id}")
async def delete_event(event_id: str, repo: AttendanceRepository = Depends(_repo)):
    """Delete an event together with its groups and attendees"""
    if not repo.delete_event(event_id):
        raise EventNotFound(event_id)
    logger.info(f"Deleted event {event_id}")
    return success_response(
        message="Event deleted successfully",
        data={"deleted_event_id": event_id}
    )


# -------- groups --------

@router.get("/events/{event_id}/groups")
async def list_groups(event_id: str, repo: AttendanceRepository = Depends(_repo)):
    """Groups of an event with attendee counts"""
    _get_event(repo, event_id)
    groups = repo.list_groups(event_id)
    return success_response(message="Groups retrieved", data=[g.model_dump() for g in groups])


@router.post("/events/{event_id}/groups")
async def create_group(event_id: str, group_data: GroupCreate, repo: AttendanceRepository = Depends(_repo)):
    """Create a group (primary contact) explicitly"""
    _get_event(repo, event_id)
    group = repo.create_group(event_id, group_data.name, group_data.email)
    return success_response(message="Group created", data=group.model_dump(), status_code=201)


@router.get("/events/{event_id}/groups/{group_id}/qr.png")
async def get_group_qr(event_id: str, group_id: str, repo: AttendanceRepository = Depends(_repo)):
    """QR code image carrying the group's check-in payload"""
    group = GroupService.get_event_group(repo, event_id, group_id)
    qr_bytes = QRService.generate_group_qr(QrPayload(event_id=event_id, group_id=group.id))
    return Response(
        content=qr_bytes,
        media_type="image/png",
        headers={"Content-Disposition": f"inline; filename={QRService.attachment_name(group.name)}"}
    )


# -------- attendees --------

@router.get("/events/{event_id}/attendees")
async def list_attendees(event_id: str, repo: AttendanceRepository = Depends(_repo)):
    """All attendees of an event with their group contact"""
    _get_event(repo, event_id)
    attendees = repo.list_event_attendees(event_id)
    return success_response(
        message="Attendees retrieved",
        data=[a.model_dump(mode="json") for a in attendees]
    )


@router.post("/events/{event_id}/attendees")
async def add_attendee(event_id: str, attendee_data: AttendeeCreate, repo: AttendanceRepository = Depends(_repo)):
    """Add a guest to an existing group or to a new one"""
    attendee = AttendeeService.add_attendee(repo, event_id, attendee_data)
    return success_response(
        message="Guest added successfully",
        data=attendee.model_dump(mode="json"),
        status_code=201
    )


@router.patch("/events/{event_id}/attendees/{attendee_id}")
async def update_attendee(
    event_id: str,
    attendee_id: str,
    attendee_update: AttendeeUpdate,
    repo: AttendanceRepository = Depends(_repo),
    session: AuthSession = Depends(require_admin)
):
    """Update guest information"""
    attendee = AttendeeService.update_attendee(repo, event_id, attendee_id, attendee_update, session.operator_name)
    return success_response(message="Guest updated successfully", data=attendee.model_dump(mode="json"))


@router.delete("/events/{event_id}/attendees/{attendee_id}")
async def remove_attendee(event_id: str, attendee_id: str, repo: AttendanceRepository = Depends(_repo)):
    """Remove a guest"""
    AttendeeService.remove_attendee(repo, event_id, attendee_id)
    return success_response(message="Guest removed", data={"deleted_attendee_id": attendee_id})


# -------- import / export --------

@router.post("/events/{event_id}/import")
async def import_attendees(event_id: str, file: UploadFile = File(...), repo: AttendanceRepository = Depends(_repo)):
    """Validate a CSV roster and import its valid rows"""
    _get_event(repo, event_id)

    if not file.filename.lower().endswith('.csv'):
        raise ImportValidationError("Invalid file format. Please upload a CSV file (.csv)")

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise ImportValidationError("File is too large")

    try:
        text = content.decode('utf-8-sig')
    except UnicodeDecodeError:
        raise ImportValidationError("CSV file must be UTF-8 encoded")

    parsed = RosterService.parse_table(text)
    if not parsed.rows:
        raise ImportValidationError("CSV file validation failed", details=parsed.errors)

    result = RosterService.import_rows(repo, event_id, parsed.rows)
    errors = parsed.errors + result.errors
    return success_response(
        message=f"Successfully imported {result.success_count} attendees"
                + (f" with {len(errors)} errors" if errors else ""),
        data={"success_count": result.success_count, "errors": errors}
    )


@router.get("/events/{event_id}/export.csv")
async def export_csv(event_id: str, by_group_id: bool = False, repo: AttendanceRepository = Depends(_repo)):
    """Download the attendee list as CSV"""
    event = _get_event(repo, event_id)
    content = RosterService.export_csv(repo.list_event_attendees(event_id), by_group_id=by_group_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={_file_stem(event.name)}_attendees.csv"}
    )


@router.get("/events/{event_id}/export.xlsx")
async def export_report(event_id: str, repo: AttendanceRepository = Depends(_repo)):
    """Download the attendance report as Excel"""
    event = _get_event(repo, event_id)
    content = RosterService.export_attendance_report(event, repo.list_event_attendees(event_id))
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={_file_stem(event.name)}_attendance.xlsx"}
    )


# -------- email --------

@router.post("/events/{event_id}/email")
async def email_attendees(
    event_id: str,
    email_data: EmailRequest,
    repo: AttendanceRepository = Depends(_repo),
    session: AuthSession = Depends(require_admin)
):
    """Email selected attendees, each with their group's QR code attached"""
    _get_event(repo, event_id)
    mailer = GraphEmailService(auth_service.provider_token_for(session))

    by_id = {a.id: a for a in repo.list_event_attendees(event_id)}
    missing = [aid for aid in email_data.attendee_ids if aid not in by_id]
    if missing:
        raise AttendeeNotFound(missing[0])

    result = mailer.send_group_invitations(
        event_id,
        [by_id[aid] for aid in email_data.attendee_ids],
        email_data.subject,
        email_data.body_html
    )
    return success_response(
        message=f"Email sent to {len(result.sent)} attendee(s)"
                + (f", {len(result.errors)} failed" if result.errors else ""),
        data={"sent": result.sent, "errors": result.errors}
    )


# -------- users --------

@router.get("/users")
async def list_users(repo: AttendanceRepository = Depends(_repo)):
    """Users with an assigned role"""
    return success_response(message="Users retrieved", data=repo.list_user_roles())


@router.put("/users/{user_id}/role")
async def update_user_role(user_id: str, role_data: RoleUpdate, repo: AttendanceRepository = Depends(_repo)):
    """Assign the admin or staff role"""
    repo.upsert_user_role(user_id, role_data.role)
    logger.info(f"User {user_id} assigned role {role_data.role}")
    return success_response(message="Role updated", data={"user_id": user_id, "role": role_data.role})
