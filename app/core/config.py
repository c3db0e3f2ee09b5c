"""
Configuration settings for the application
"""

import os
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""
    
    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./event_attendance.db")
    USE_FIREBASE: bool = os.getenv("USE_FIREBASE", "false").lower() in ("1", "true", "yes")
    FIREBASE_CREDENTIALS_JSON: str | None = os.getenv("FIREBASE_CREDENTIALS_JSON")
    FIREBASE_CREDENTIALS_FILE: str | None = os.getenv("FIREBASE_CREDENTIALS_FILE")
    FIREBASE_CREDENTIALS_B64: str | None = os.getenv("FIREBASE_CREDENTIALS_B64")
    
    # Identity provider
    FIREBASE_API_KEY: str = os.getenv("FIREBASE_API_KEY", "")
    IDENTITY_API_URL: str = os.getenv("IDENTITY_API_URL", "https://identitytoolkit.googleapis.com/v1")
    OAUTH_PROVIDER_ID: str = os.getenv("OAUTH_PROVIDER_ID", "microsoft.com")
    OAUTH_SCOPES: str = os.getenv("OAUTH_SCOPES", "openid email profile offline_access Mail.Send User.Read")
    
    # Mail
    GRAPH_API_URL: str = os.getenv("GRAPH_API_URL", "https://graph.microsoft.com/v1.0")
    
    # Application
    BASE_URL: str = os.getenv("BASE_URL", "http://localhost:8000")
    DEFAULT_STAFF_NAME: str = os.getenv("DEFAULT_STAFF_NAME", "Staff")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_TIMEOUT: int = 30
    
    # In-memory session lifetimes
    AUTH_SESSION_TTL_MINUTES: int = int(os.getenv("AUTH_SESSION_TTL_MINUTES", "720"))
    OAUTH_STATE_TTL_MINUTES: int = int(os.getenv("OAUTH_STATE_TTL_MINUTES", "10"))
    ATTENDANCE_SESSION_TTL_MINUTES: int = int(os.getenv("ATTENDANCE_SESSION_TTL_MINUTES", "240"))
    
    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    
    # File limits
    MAX_UPLOAD_SIZE: int = 5 * 1024 * 1024  # 5MB
    
    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
