"""
Event-related Pydantic schemas
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

class EventCreate(BaseModel):
    """Schema for creating an event"""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    event_date: datetime
    event_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    location: Optional[str] = None

class EventUpdate(BaseModel):
    """Schema for updating an event"""
    name: Optional[str] = None
    description: Optional[str] = None
    event_date: Optional[datetime] = None
    event_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    location: Optional[str] = None

class EventResponse(BaseModel):
    """Basic event response"""
    id: str
    name: str
    description: Optional[str] = None
    event_date: datetime
    event_time: Optional[str] = None
    location: Optional[str] = None
    
    class Config:
        from_attributes = True

class EventDetail(EventResponse):
    """Event response with attendance counts"""
    attendee_count: int = 0
    checked_in_count: int = 0

class EventStats(BaseModel):
    """Attendance statistics for one event"""
    total_attendees: int
    checked_in: int
    attendance_rate: int
