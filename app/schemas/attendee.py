"""
Group and attendee Pydantic schemas
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field

class GroupCreate(BaseModel):
    """Schema for creating a group explicitly"""
    name: str = Field(min_length=1)
    email: EmailStr

class GroupResponse(BaseModel):
    """Group response schema"""
    id: str
    event_id: str
    name: str
    email: str
    
    class Config:
        from_attributes = True

class GroupDetail(GroupResponse):
    """Group with attendee counts"""
    attendee_count: int = 0
    checked_in_count: int = 0

class AttendeeCreate(BaseModel):
    """Schema for adding a guest; group_name may be CREATE_NEW_GROUP"""
    name: str = Field(min_length=1)
    email: EmailStr
    group_name: str = Field(min_length=1)
    role: Optional[str] = None

class AttendeeUpdate(BaseModel):
    """Schema for updating a guest"""
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    group_id: Optional[str] = None
    role: Optional[str] = None
    is_attending: Optional[bool] = None

class AttendeeResponse(BaseModel):
    """Attendee joined with its group contact"""
    id: str
    event_id: str
    group_id: str
    name: str
    email: str
    role: Optional[str] = None
    is_attending: bool = False
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    group_name: Optional[str] = None
    group_email: Optional[str] = None
    
    class Config:
        from_attributes = True

class EmailRequest(BaseModel):
    """Email with a per-recipient QR attachment"""
    subject: str = Field(min_length=1)
    body_html: str = Field(min_length=1)
    attendee_ids: List[str] = Field(min_length=1)
