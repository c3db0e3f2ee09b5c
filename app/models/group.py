"""
Group model - the primary contact for a cluster of attendees
"""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.core.db import Base
from app.models.event import new_id, utcnow

class Group(Base):
    __tablename__ = "groups"
    
    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    
    # Relationships
    event = relationship("Event", back_populates="groups")
    attendees = relationship("Attendee", back_populates="group", cascade="all, delete-orphan")
