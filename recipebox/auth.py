"""
Session handling against the hosted auth provider.

The provider issues access/refresh tokens through its REST token endpoint;
recipebox only signs in, refreshes once when the gateway rejects a token,
and signs out. Subscribers are told when a session starts, is refreshed,
ends, or needs a new login.
"""
import threading
from typing import Callable, List, Optional

import requests

from . import auth_storage
from .config import AUTH_TIMEOUT, SUPABASE_ANON_KEY, SUPABASE_URL, get_logger
from .data_models import AuthSession

logger = get_logger("auth")

SESSION_STARTED = "started"
SESSION_REFRESHED = "refreshed"
SESSION_ENDED = "ended"
LOGIN_REQUIRED_EVENT = "login_required"

SessionListener = Callable[[str, Optional[AuthSession]], None]


class AuthError(Exception):
    """Authentication related errors"""
    pass


class LoginRequired(AuthError):
    """The session could not be refreshed; the user has to sign in again."""
    pass


class SessionManager:
    """Owns the active session and its lifecycle."""

    def __init__(
        self,
        auth_url: str = SUPABASE_URL,
        anon_key: str = SUPABASE_ANON_KEY,
        storage=auth_storage,
        http: Optional[requests.Session] = None,
        timeout: float = AUTH_TIMEOUT,
    ):
        self.auth_url = auth_url.rstrip("/")
        self.anon_key = anon_key
        self.storage = storage
        self.http = http or requests.Session()
        self.timeout = timeout
        self.session: Optional[AuthSession] = None
        self._listeners: List[SessionListener] = []
        self._refresh_lock = threading.Lock()

    # --- lifecycle ---
    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self.session)
            except Exception:
                logger.exception("Session listener failed on %s", event)

    @property
    def is_active(self) -> bool:
        return self.session is not None

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    def start(self, session: AuthSession) -> AuthSession:
        self.session = session
        try:
            self.storage.save_tokens(session)
        except Exception:
            logger.warning("Could not persist session tokens; continuing without storage")
        logger.debug("Session started for user %s", session.user_id)
        self._emit(SESSION_STARTED)
        return session

    def end(self, reason: str = SESSION_ENDED) -> None:
        """End the active session. `reason` is emitted after `ended`."""
        if self.session is None:
            return
        self.session = None
        try:
            self.storage.clear_tokens()
        except Exception:
            logger.warning("Could not clear stored tokens")
        self._emit(SESSION_ENDED)
        if reason != SESSION_ENDED:
            self._emit(reason)

    # --- provider calls ---
    def _token_request(self, grant_type: str, payload: dict) -> AuthSession:
        if not self.auth_url:
            raise AuthError("SUPABASE_URL is not configured")
        try:
            resp = self.http.post(
                f"{self.auth_url}/auth/v1/token",
                params={"grant_type": grant_type},
                json=payload,
                headers={"apikey": self.anon_key, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.exception("Token request (%s) failed", grant_type)
            raise AuthError(f"Token request failed: {e}") from e

        logger.debug("Token request (%s) HTTP %s", grant_type, resp.status_code)
        if not resp.ok:
            raise AuthError(f"Token request failed: {resp.text}")
        try:
            return AuthSession.from_token_response(resp.json())
        except (ValueError, KeyError) as e:
            raise AuthError(f"Malformed token response: {e}") from e

    def sign_in(self, email: str, password: str) -> AuthSession:
        session = self._token_request("password", {"email": email, "password": password})
        return self.start(session)

    def refresh(self) -> AuthSession:
        """Exchange the refresh token for a new session.

        Raises AuthError when there is nothing to refresh or the provider
        refuses; the caller decides whether that ends the session.
        """
        with self._refresh_lock:
            current = self.session
            if current is None or not current.refresh_token:
                raise AuthError("No refresh token available")
            fresh = self._token_request("refresh_token", {"refresh_token": current.refresh_token})
            # Keep identity fields the refresh response may omit
            fresh.user_id = fresh.user_id or current.user_id
            fresh.username = fresh.username or current.username
            fresh.email = fresh.email or current.email
            self.session = fresh
            try:
                self.storage.save_tokens(fresh)
            except Exception:
                logger.debug("Failed to persist refreshed tokens (non-fatal)")
        self._emit(SESSION_REFRESHED)
        return fresh

    def restore(self) -> Optional[AuthSession]:
        """Resume a stored session, refreshing it first when possible."""
        try:
            stored = self.storage.load_tokens()
        except Exception:
            logger.exception("Could not read stored tokens")
            return None
        if not stored:
            return None

        self.session = stored
        if stored.refresh_token:
            try:
                self.refresh()
            except AuthError:
                logger.debug("Stored refresh token rejected; login required")
                self.session = None
                try:
                    self.storage.clear_tokens()
                except Exception:
                    logger.warning("Could not clear stored tokens")
                return None
        logger.debug("Restored session for %s", self.session.username)
        self._emit(SESSION_STARTED)
        return self.session

    def sign_out(self) -> None:
        if self.session and self.auth_url:
            try:
                self.http.post(
                    f"{self.auth_url}/auth/v1/logout",
                    headers={"apikey": self.anon_key, "Authorization": f"Bearer {self.session.access_token}"},
                    timeout=self.timeout,
                )
            except requests.RequestException:
                logger.debug("Provider logout failed; clearing local session anyway")
        self.end()
