"""
Attendance session request schemas
"""

from typing import Optional
from pydantic import BaseModel, model_validator

class SessionCreate(BaseModel):
    """Start a session from an event selection or a scanned QR payload"""
    event_id: Optional[str] = None
    qr_data: Optional[str] = None

    @model_validator(mode="after")
    def check_source(self):
        if not self.event_id and not self.qr_data:
            raise ValueError("Either event_id or qr_data is required")
        return self

class RescanRequest(BaseModel):
    """A new QR scan supplied mid-session"""
    qr_data: str
