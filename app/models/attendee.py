"""
Attendee model
"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.core.db import Base
from app.models.event import new_id, utcnow

class Attendee(Base):
    __tablename__ = "attendees"
    
    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    role = Column(String(100), nullable=True)
    is_attending = Column(Boolean, default=False, nullable=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(String(255), nullable=True)  # staff member name
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    
    # Relationships
    event = relationship("Event", back_populates="attendees")
    group = relationship("Group", back_populates="attendees")
    
    __table_args__ = (
        Index("idx_attendees_event_group", "event_id", "group_id"),
    )
    
    @property
    def group_name(self):
        return self.group.name if self.group else None
    
    @property
    def group_email(self):
        return self.group.email if self.group else None
