"""
Tests for the group QR payload contract and QR image generation
"""

import base64
import json
import pytest

from app.core.errors import InvalidQrFormat
from app.services.qr_service import QRService, QrPayload, encode_qr_payload, parse_qr_payload

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def test_encode_then_parse():
    raw = encode_qr_payload("event-1", "group-9")

    assert json.loads(raw) == {"group_id": "group-9", "event_id": "event-1"}
    assert parse_qr_payload(raw) == QrPayload(event_id="event-1", group_id="group-9")

def test_extra_fields_are_ignored():
    payload = parse_qr_payload('{"event_id": "e", "group_id": "g", "version": 2}')

    assert payload.event_id == "e"
    assert payload.group_id == "g"

@pytest.mark.parametrize("raw", ["not json", "", "[1, 2]", "42", "null"])
def test_malformed_payloads(raw):
    with pytest.raises(InvalidQrFormat) as exc:
        parse_qr_payload(raw)

    assert exc.value.message == "Invalid QR code format"

def test_missing_group_id():
    with pytest.raises(InvalidQrFormat) as exc:
        parse_qr_payload('{"event_id": "e"}')

    assert exc.value.message == "Invalid QR code: missing group_id"
    assert exc.value.details == ["group_id"]

def test_empty_fields_count_as_missing():
    with pytest.raises(InvalidQrFormat) as exc:
        parse_qr_payload('{"event_id": "  ", "group_id": ""}')

    assert exc.value.details == ["group_id", "event_id"]

def test_generate_group_qr_png():
    payload = QrPayload(event_id="event-1", group_id="group-1")

    png = QRService.generate_group_qr(payload)
    encoded = QRService.generate_group_qr_base64(payload)

    assert png.startswith(PNG_SIGNATURE)
    assert base64.b64decode(encoded) == png

def test_attachment_name_is_sanitized():
    assert QRService.attachment_name("Mary-Jane Smith") == "QR-Code-Mary-Jane-Smith.png"
