"""
Roster import/export: CSV bulk import, CSV export and the XLSX attendance report
"""

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from app.core.errors import AttendanceError, EventNotFound
from app.schemas.attendee import AttendeeResponse
from app.schemas.event import EventResponse
from app.services.group_service import GroupService
from app.services.repositories import AttendanceRepository

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
GROUP_NAME_COLUMNS = ("groupname", "group_name", "group")
GROUP_ID_COLUMNS = ("groupid", "group_id")


@dataclass
class ImportRow:
    """One validated CSV line; exactly one of group_name/group_id is set"""
    line: int
    name: str
    email: str
    group_name: Optional[str] = None
    group_id: Optional[str] = None
    role: Optional[str] = None


@dataclass
class ParsedTable:
    rows: List[ImportRow] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    success_count: int = 0
    errors: List[str] = field(default_factory=list)


def _split(line: str) -> List[str]:
    values = next(csv.reader([line], skipinitialspace=True), [])
    return [v.replace('"', '').strip() for v in values]


class RosterService:
    """Service for attendee roster import and export"""

    REQUIRED_COLUMNS = ['name', 'email']
    TEMPLATE = (
        'name,email,groupName,role\n'
        '"John Doe","john@example.com","John Doe","Speaker"\n'
        '"Jane Smith","jane@example.com","John Doe","Attendee"\n'
        '"Bob Wilson","bob@example.com","Sarah Johnson","VIP"\n'
    )

    @staticmethod
    def create_template() -> str:
        """CSV template with the import columns and sample rows"""
        return RosterService.TEMPLATE

    @staticmethod
    def validate_structure(headers: Sequence[str]) -> List[str]:
        """Return the missing required columns of a normalized header row"""
        missing = [col for col in RosterService.REQUIRED_COLUMNS if col not in headers]
        if not any(h in GROUP_NAME_COLUMNS + GROUP_ID_COLUMNS for h in headers):
            missing.append('groupname')
        return missing

    @staticmethod
    def parse_table(raw_text: str) -> ParsedTable:
        """Parse CSV text into importable rows and per-line errors.

        Line numbers in errors are 1-based and count the header. Lines with
        fewer fields than the header are skipped silently. Nothing is
        de-duplicated.
        """
        lines = [line for line in raw_text.splitlines() if line.strip()]
        if len(lines) < 2:
            return ParsedTable(errors=['CSV file must contain headers and at least one data row'])

        headers = [h.lower() for h in _split(lines[0])]
        missing = RosterService.validate_structure(headers)
        if missing:
            return ParsedTable(errors=[f"Missing required columns: {', '.join(missing)}"])

        by_group_id = not any(h in GROUP_NAME_COLUMNS for h in headers)
        result = ParsedTable()

        for i, line in enumerate(lines[1:], start=2):
            values = _split(line)
            if len(values) < len(headers):
                continue

            record: Dict[str, str] = {}
            for header, value in zip(headers, values):
                if header in ('name', 'email', 'role'):
                    record[header] = value
                elif header in GROUP_NAME_COLUMNS and not by_group_id:
                    record['group'] = value
                elif header in GROUP_ID_COLUMNS and by_group_id:
                    record['group'] = value

            if not record.get('name') or not record.get('email') or not record.get('group'):
                result.errors.append(f"Row {i}: Missing required fields (name, email, or groupName)")
                continue

            if not EMAIL_PATTERN.match(record['email']):
                result.errors.append(f"Row {i}: Invalid email format")
                continue

            result.rows.append(ImportRow(
                line=i,
                name=record['name'],
                email=record['email'],
                group_name=None if by_group_id else record['group'],
                group_id=record['group'] if by_group_id else None,
                role=record.get('role') or None,
            ))

        return result

    @staticmethod
    def import_rows(repo: AttendanceRepository, event_id: str, rows: Sequence[ImportRow]) -> ImportResult:
        """Insert validated rows one at a time; a failing row does not stop the rest"""
        if not repo.get_event(event_id):
            raise EventNotFound(event_id)

        # A group's contact is the row carrying the group's own name, when present
        contact_emails: Dict[str, str] = {}
        for row in rows:
            if row.group_name and row.name == row.group_name:
                contact_emails.setdefault(row.group_name, row.email)

        result = ImportResult()
        for row in rows:
            try:
                if row.group_id:
                    group = GroupService.get_event_group(repo, event_id, row.group_id)
                else:
                    group = GroupService.find_or_create_group(
                        repo, event_id, row.group_name, contact_emails.get(row.group_name, row.email)
                    )
                repo.create_attendee(
                    event_id=event_id,
                    group_id=group.id,
                    name=row.name,
                    email=row.email,
                    role=row.role,
                )
                result.success_count += 1
            except AttendanceError as e:
                logger.error(f"Import of row {row.line} failed: {e.message}")
                result.errors.append(f"Row {row.line}: {e.message}")

        logger.info(f"Imported {result.success_count} attendees into event {event_id} ({len(result.errors)} errors)")
        return result

    @staticmethod
    def export_csv(attendees: Sequence[AttendeeResponse], by_group_id: bool = False) -> str:
        """Attendee list as CSV; data fields are always double-quoted"""
        if by_group_id:
            headers = ['Name', 'Email', 'Group ID', 'Role', 'Attendance Status']
        else:
            headers = ['Name', 'Email', 'Group Name', 'Attendance Status']

        buffer = io.StringIO()
        buffer.write(','.join(headers) + '\n')
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n')
        for a in attendees:
            status = 'Present' if a.is_attending else 'Absent'
            if by_group_id:
                writer.writerow([a.name, a.email, a.group_id, a.role or '', status])
            else:
                writer.writerow([a.name, a.email, a.group_name or '', status])

        return buffer.getvalue()

    @staticmethod
    def export_attendance_report(event: EventResponse, attendees: Sequence[AttendeeResponse]) -> bytes:
        """XLSX attendance report ordered by group contact, then attendee"""
        ordered = sorted(attendees, key=lambda a: ((a.group_name or '').lower(), a.name.lower()))
        data = [
            {
                'Event Name': event.name,
                'Group Contact Name': a.group_name or '',
                'Group Contact Email': a.group_email or '',
                'Attendee Name': a.name,
                'Attendee Email': a.email,
                'Attended': 'Yes' if a.is_attending else 'No',
                'Checked In At': a.checked_in_at.isoformat() if a.checked_in_at else '',
                'Checked In By': a.checked_in_by or '',
            }
            for a in ordered
        ]

        df = pd.DataFrame(data, columns=[
            'Event Name', 'Group Contact Name', 'Group Contact Email', 'Attendee Name',
            'Attendee Email', 'Attended', 'Checked In At', 'Checked In By'
        ])

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name='Attendance')

        return buffer.getvalue()
