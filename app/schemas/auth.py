"""
Authentication schemas
"""

from typing import Literal
from pydantic import BaseModel, EmailStr

class LoginRequest(BaseModel):
    """Password sign-in request"""
    email: EmailStr
    password: str

class RoleUpdate(BaseModel):
    """Assign a role to a user"""
    role: Literal["admin", "staff"]
