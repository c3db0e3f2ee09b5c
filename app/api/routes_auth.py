"""
Authentication routes
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.schemas.auth import LoginRequest
from app.services.auth_service import AuthSession
from app.services.repositories import get_repository
from app.utils.responses import success_response
from app.utils.security import auth_service, get_current_session, security

router = APIRouter()


def _session_data(session: AuthSession, include_token: bool = False) -> dict:
    data = {
        "user_id": session.user_id,
        "email": session.email,
        "role": session.role,
        "can_send_email": session.provider_token is not None,
    }
    if include_token:
        data["access_token"] = session.token
        data["token_type"] = "bearer"
    return data


@router.post("/login")
async def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    """Sign in with email and password"""
    repo = get_repository(db)
    session = auth_service.sign_in(login_data.email, login_data.password, repo.get_user_role)
    return success_response(
        message="Signed in",
        data=_session_data(session, include_token=True)
    )


@router.post("/logout")
async def logout(credentials=Depends(security)):
    """Sign out and discard the user's open attendance sessions"""
    if credentials is not None:
        auth_service.sign_out(credentials.credentials)
    return success_response(message="Signed out")


@router.get("/me")
async def me(session: AuthSession = Depends(get_current_session)):
    """Current user"""
    return success_response(message="Current user", data=_session_data(session))


@router.get("/oauth/start")
async def oauth_start():
    """Redirect to the Microsoft consent screen"""
    auth_url = auth_service.begin_oauth(f"{settings.BASE_URL}/auth/oauth/callback")
    return RedirectResponse(auth_url)


@router.get("/oauth/callback")
async def oauth_callback(request: Request, state: str, db: Session = Depends(get_db)):
    """Complete Microsoft sign-in and keep the mail token"""
    repo = get_repository(db)
    session = auth_service.complete_oauth(state, str(request.url), repo.get_user_role)
    return success_response(
        message="Signed in with Microsoft",
        data=_session_data(session, include_token=True)
    )
