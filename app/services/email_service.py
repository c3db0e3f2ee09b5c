"""
Email delivery through the Microsoft Graph mail API
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests
from jinja2 import Environment, select_autoescape

from app.core.config import settings
from app.core.errors import EmailSendError, ProviderTokenMissing
from app.schemas.attendee import AttendeeResponse
from app.services.qr_service import QRService, QrPayload

logger = logging.getLogger(__name__)

EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif;">
    <div style="max-width: 600px; margin: 0 auto;">
      {% if subject %}<p style="font-size: 20px; font-weight: 600;">{{ subject }}</p>{% endif %}
      <div>{{ body_html | safe }}</div>
    </div>
  </body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default_for_string=True))
_template = _env.from_string(EMAIL_TEMPLATE)


def render_email(body_html: str, subject: Optional[str] = None) -> str:
    """Wrap the admin-supplied HTML body in the email layout"""
    return _template.render(subject=subject, body_html=body_html)


@dataclass
class EmailAttachment:
    name: str
    content_base64: str
    content_type: str = "image/png"


@dataclass
class SendResult:
    sent: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class GraphEmailService:
    """Sends mail as the signed-in user with their provider access token"""

    def __init__(self, access_token: Optional[str], base_url: str = None, timeout: int = None):
        if not access_token:
            raise ProviderTokenMissing()
        self.access_token = access_token
        self.base_url = (base_url or settings.GRAPH_API_URL).rstrip('/')
        self.timeout = timeout or settings.REQUEST_TIMEOUT

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    def send_email(
        self,
        recipients: Sequence[str],
        subject: str,
        html_content: str,
        attachments: Sequence[EmailAttachment] = ()
    ) -> None:
        message = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_content},
                "toRecipients": [{"emailAddress": {"address": r}} for r in recipients],
                "attachments": [
                    {
                        "@odata.type": "#microsoft.graph.fileAttachment",
                        "name": a.name,
                        "contentType": a.content_type,
                        "contentBytes": a.content_base64,
                    }
                    for a in attachments
                ],
            },
            "saveToSentItems": True,
        }

        try:
            response = requests.post(
                f"{self.base_url}/me/sendMail",
                headers=self.headers,
                json=message,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send email to {', '.join(recipients)}: {e}")
            raise EmailSendError(f"Failed to send email to {', '.join(recipients)}") from e

        logger.info(f"Email sent successfully to: {', '.join(recipients)}")

    def get_user_profile(self) -> Dict[str, Any]:
        try:
            response = requests.get(f"{self.base_url}/me", headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Graph API connection failed: {e}")
            raise EmailSendError("Could not reach the mail service") from e
        return response.json()

    def send_group_invitations(
        self,
        event_id: str,
        attendees: Sequence[AttendeeResponse],
        subject: str,
        body_html: str
    ) -> SendResult:
        """One message per attendee, each carrying their group's QR code"""
        html = render_email(body_html, subject)
        result = SendResult()

        for attendee in attendees:
            payload = QrPayload(event_id=event_id, group_id=attendee.group_id)
            attachment = EmailAttachment(
                name=QRService.attachment_name(attendee.name),
                content_base64=QRService.generate_group_qr_base64(payload),
            )
            try:
                self.send_email([attendee.email], subject, html, [attachment])
                result.sent.append(attendee.email)
            except EmailSendError as e:
                result.errors.append(e.message)

        return result
