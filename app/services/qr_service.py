"""
QR payload contract and QR code image generation
"""

import base64
import io
import json
import re
from dataclasses import dataclass
from typing import List

import qrcode

from app.core.errors import InvalidQrFormat

REQUIRED_FIELDS = ("group_id", "event_id")


@dataclass(frozen=True)
class QrPayload:
    """A validated (event, group) pair; scanned text becomes one only via ``parse_qr_payload``"""
    event_id: str
    group_id: str

    def encode(self) -> str:
        return encode_qr_payload(self.event_id, self.group_id)


def encode_qr_payload(event_id: str, group_id: str) -> str:
    """Wire format embedded in a group's QR code"""
    return json.dumps({"group_id": group_id, "event_id": event_id}, separators=(",", ":"))


def parse_qr_payload(raw: str) -> QrPayload:
    """Decode a scanned QR string into a ``QrPayload``.

    Raises InvalidQrFormat for non-JSON input, non-object JSON, or a missing
    or empty ``group_id``/``event_id``. Existence of the event and group is
    not checked here.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise InvalidQrFormat("Invalid QR code format")

    if not isinstance(data, dict):
        raise InvalidQrFormat("Invalid QR code format")

    missing: List[str] = [
        field for field in REQUIRED_FIELDS
        if not isinstance(data.get(field), str) or not data[field].strip()
    ]
    if missing:
        raise InvalidQrFormat(f"Invalid QR code: missing {' or '.join(missing)}", details=missing)

    return QrPayload(event_id=data["event_id"], group_id=data["group_id"])


class QRService:
    """Service for generating group QR codes"""

    @staticmethod
    def generate_group_qr(payload: QrPayload, format: str = 'PNG') -> bytes:
        """Render the group's payload as a QR code image"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=8,
            border=2,
        )
        qr.add_data(payload.encode())
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format=format)

        return buffer.getvalue()

    @staticmethod
    def generate_group_qr_base64(payload: QrPayload) -> str:
        """PNG bytes as base64 text, the shape mail attachments expect"""
        return base64.b64encode(QRService.generate_group_qr(payload)).decode("ascii")

    @staticmethod
    def attachment_name(attendee_name: str) -> str:
        """File name for an attendee's QR attachment"""
        return f"QR-Code-{re.sub(r'[^a-zA-Z0-9]', '-', attendee_name)}.png"
