"""
User role model
"""

from sqlalchemy import Column, String, DateTime

from app.core.db import Base
from app.models.event import new_id, utcnow

class UserRole(Base):
    __tablename__ = "user_roles"
    
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(128), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False)  # admin, staff
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
