# storefront/services/user_session_manager.py
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from storefront.services.session_store import SessionStore
from storefront.utils.logging import get_logger
from storefront.utils.settings import USER_SESSION_TTL_SECONDS

logger = get_logger(__name__)

USER_SESSION_PREFIX = "user_session:"


class UserSessionManager:
    """Bearer token -> user_id, prosty cache z TTL."""

    def __init__(self, store: SessionStore, ttl_seconds: int = USER_SESSION_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def _key(self, token: str) -> str:
        return f"{USER_SESSION_PREFIX}{token}"

    def create_session(self, user_id: int) -> Dict[str, Any]:
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        session = {
            "token": token,
            "user_id": user_id,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        }
        self.store.set(self._key(token), session, self.ttl_seconds)
        logger.info(f"User session created for user {user_id}")
        return session

    def get_user_id(self, token: str) -> int | None:
        session = self.store.get(self._key(token))
        if session is None:
            return None
        return session["user_id"]

    def delete_session(self, token: str) -> None:
        self.store.delete(self._key(token))

    def find_sessions_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        sessions = []
        for key in self.store.scan(f"{USER_SESSION_PREFIX}*"):
            session = self.store.get(key)
            if session and session.get("user_id") == user_id:
                sessions.append(session)
        return sessions

    def delete_all_for_user(self, user_id: int) -> int:
        """Logout everywhere."""
        sessions = self.find_sessions_by_user(user_id)
        for session in sessions:
            self.delete_session(session["token"])
        logger.info(f"Removed {len(sessions)} sessions of user {user_id}")
        return len(sessions)
