"""
Sign-in, sign-out and OAuth token capture against the hosted identity service
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from app.core.config import settings
from app.core.errors import AuthenticationError, ProviderTokenMissing
from app.services.firebase_client import revoke_user_sessions

logger = logging.getLogger(__name__)

SIGNED_IN = "signed_in"
SIGNED_OUT = "signed_out"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthSession:
    """A signed-in user as seen by this service"""
    token: str
    user_id: str
    email: Optional[str]
    role: str = "staff"
    provider_token: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def operator_name(self) -> str:
        return self.email or settings.DEFAULT_STAFF_NAME


class IdentityProvider:
    """Client for the hosted identity REST API."""

    def __init__(self, base_url: str = None, api_key: str = None, timeout: int = None):
        self.base_url = (base_url or settings.IDENTITY_API_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.FIREBASE_API_KEY
        self.timeout = timeout or settings.REQUEST_TIMEOUT

    def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{self.base_url}/accounts:{method}",
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Identity service unreachable ({method}): {e}")
            raise AuthenticationError("Authentication service is unavailable") from e

        if not response.ok:
            try:
                reason = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                reason = response.text
            logger.error(f"Identity service rejected {method}: {response.status_code} {reason}")
            raise AuthenticationError(f"Sign-in failed: {reason}")

        return response.json()

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        return self._post("signInWithPassword", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })

    def create_auth_uri(self, provider_id: str, continue_uri: str, scopes: str) -> Dict[str, Any]:
        """Start an OAuth redirect; returns ``authUri`` and ``sessionId``"""
        return self._post("createAuthUri", {
            "providerId": provider_id,
            "continueUri": continue_uri,
            "oauthScope": scopes,
        })

    def sign_in_with_idp(self, request_uri: str, session_id: str) -> Dict[str, Any]:
        """Complete an OAuth redirect; the response carries the provider token"""
        return self._post("signInWithIdp", {
            "requestUri": request_uri,
            "sessionId": session_id,
            "returnSecureToken": True,
            "returnIdpCredential": True,
        })


class AuthService:
    """Owns signed-in sessions and notifies listeners when they change"""

    def __init__(
        self,
        provider: IdentityProvider = None,
        session_ttl: Optional[timedelta] = None,
        oauth_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider or IdentityProvider()
        self.session_ttl = session_ttl or timedelta(minutes=settings.AUTH_SESSION_TTL_MINUTES)
        self.oauth_ttl = oauth_ttl or timedelta(minutes=settings.OAUTH_STATE_TTL_MINUTES)
        self.clock = clock
        self.sessions: Dict[str, AuthSession] = {}
        self.pending_oauth: Dict[str, Tuple[str, datetime]] = {}  # state -> (identity session id, started)
        self.listeners: List[Callable[[str, AuthSession], None]] = []

    def subscribe(self, listener: Callable[[str, AuthSession], None]) -> Callable[[], None]:
        """Register for sign-in/sign-out notifications; returns an unsubscribe callable"""
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    def _notify(self, change: str, session: AuthSession):
        for listener in list(self.listeners):
            listener(change, session)

    def _purge_expired(self) -> None:
        now = self.clock()
        for state, (_, started) in list(self.pending_oauth.items()):
            if now - started > self.oauth_ttl:
                del self.pending_oauth[state]
        expired = [s for s in self.sessions.values() if now - s.created_at > self.session_ttl]
        for session in expired:
            del self.sessions[session.token]
            logger.info(f"Session for user {session.user_id} expired")
            self._notify(SIGNED_OUT, session)

    def _open_session(self, user_id: str, email: Optional[str], role: Optional[str], provider_token: Optional[str] = None) -> AuthSession:
        session = AuthSession(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            email=email,
            role=role or "staff",
            provider_token=provider_token,
            created_at=self.clock(),
        )
        self._purge_expired()
        self.sessions[session.token] = session
        logger.info(f"User {user_id} signed in as {session.role}")
        self._notify(SIGNED_IN, session)
        return session

    def sign_in(self, email: str, password: str, role_lookup: Callable[[str], Optional[str]]) -> AuthSession:
        result = self.provider.sign_in_with_password(email, password)
        user_id = result["localId"]
        return self._open_session(user_id, result.get("email", email), role_lookup(user_id))

    def begin_oauth(self, redirect_uri: str) -> str:
        """Return the provider's authorization URL for the redirect flow"""
        self._purge_expired()
        state = secrets.token_urlsafe(16)
        continue_uri = f"{redirect_uri}?state={state}"
        result = self.provider.create_auth_uri(settings.OAUTH_PROVIDER_ID, continue_uri, settings.OAUTH_SCOPES)
        self.pending_oauth[state] = (result["sessionId"], self.clock())
        return result["authUri"]

    def complete_oauth(self, state: str, request_uri: str, role_lookup: Callable[[str], Optional[str]]) -> AuthSession:
        """Finish the redirect flow and keep the provider access token for email"""
        self._purge_expired()
        pending = self.pending_oauth.pop(state, None)
        if not pending:
            raise AuthenticationError("Unknown or expired sign-in attempt")
        identity_session, _ = pending

        result = self.provider.sign_in_with_idp(request_uri, identity_session)
        provider_token = result.get("oauthAccessToken")
        if not provider_token:
            logger.warning(f"OAuth sign-in for {result.get('email')} returned no provider token")
        user_id = result["localId"]
        return self._open_session(user_id, result.get("email"), role_lookup(user_id), provider_token)

    def get_session(self, token: str) -> AuthSession:
        self._purge_expired()
        session = self.sessions.get(token)
        if not session:
            raise AuthenticationError("Not signed in")
        return session

    def provider_token_for(self, session: AuthSession) -> str:
        if not session.provider_token:
            raise ProviderTokenMissing()
        return session.provider_token

    def sign_out(self, token: str) -> None:
        session = self.sessions.pop(token, None)
        if not session:
            return
        revoke_user_sessions(session.user_id)
        logger.info(f"User {session.user_id} signed out")
        self._notify(SIGNED_OUT, session)
