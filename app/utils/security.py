"""
Security utilities and authentication dependencies
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.errors import AuthenticationError, PermissionDenied
from app.services.attendance_service import session_manager
from app.services.auth_service import AuthService, AuthSession, SIGNED_OUT

# Global auth service instance
auth_service = AuthService()

security = HTTPBearer(auto_error=False)


def _close_attendance_sessions(change: str, session: AuthSession):
    if change == SIGNED_OUT:
        session_manager.close_owned_by(session.token)


auth_service.subscribe(_close_attendance_sessions)


def get_current_session(credentials: HTTPAuthorizationCredentials = Depends(security)) -> AuthSession:
    """Resolve the bearer token to a signed-in session"""
    if credentials is None:
        raise AuthenticationError("Not signed in")
    return auth_service.get_session(credentials.credentials)


def require_admin(session: AuthSession = Depends(get_current_session)) -> AuthSession:
    """Allow only administrators"""
    if not session.is_admin:
        raise PermissionDenied("Administrator access required")
    return session
