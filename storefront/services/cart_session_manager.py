# storefront/services/cart_session_manager.py
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from storefront.services.session_store import SessionStore
from storefront.utils.logging import get_logger
from storefront.utils.settings import CART_SESSION_TTL_SECONDS

logger = get_logger(__name__)

CART_SESSION_PREFIX = "cart_session:"


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


class CartSessionManager:
    """
    Token sesji -> {cart_id, user_id}. To tylko wskaznik na koszyk w bazie,
    nigdy zrodlo prawdy o zawartosci.
    """

    def __init__(self, store: SessionStore, ttl_seconds: int = CART_SESSION_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def _key(self, token: str) -> str:
        return f"{CART_SESSION_PREFIX}{token}"

    def create_session(self, token: str, cart_id: int, user_id: int | None) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        session = {
            "token": token,
            "cart_id": cart_id,
            "user_id": user_id,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        }
        self.store.set(self._key(token), session, self.ttl_seconds)
        logger.info(f"Cart session stored for cart {cart_id} (user {user_id})")
        return session

    def get_session(self, token: str) -> Dict[str, Any] | None:
        return self.store.get(self._key(token))

    def extend_session(self, token: str) -> Dict[str, Any] | None:
        session = self.get_session(token)
        if session is None:
            return None
        session["expires_at"] = (
            datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        ).isoformat()
        self.store.set(self._key(token), session, self.ttl_seconds)
        return session

    def delete_session(self, token: str) -> None:
        self.store.delete(self._key(token))

    def ensure_session(self, cart_id: int, token: str, user_id: int | None) -> Dict[str, Any]:
        """Odtwarza brakujacy (albo nieaktualny) wskaznik z wiersza koszyka."""
        session = self.get_session(token)
        if session is not None and session.get("cart_id") == cart_id and session.get("user_id") == user_id:
            return session
        if session is None:
            logger.info(f"Cart session for cart {cart_id} missing, recreating")
        return self.create_session(token, cart_id, user_id)

    def find_sessions_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        sessions = []
        for key in self.store.scan(f"{CART_SESSION_PREFIX}*"):
            session = self.store.get(key)
            if session and session.get("user_id") == user_id:
                sessions.append(session)
        return sessions
