# storefront/services/lock_service.py
from storefront.services.session_store import SessionStore
from storefront.utils.logging import get_logger
from storefront.utils.settings import CHECKOUT_LOCK_TTL_SECONDS

logger = get_logger(__name__)


class LockService:
    """
    Krotkie locki w redisie:
    -tworzenie zamowienia z sesji checkoutu (max jedno na raz)
    -zwalnianie atomowo przez lua, tylko przez wlasciciela
    """

    def __init__(self, store: SessionStore):
        self.store = store

    @staticmethod
    def _checkout_key(session_id: str) -> str:
        return f"lock:checkout:{session_id}"

    def acquire_checkout_lock(self, session_id: str, owner: str, ttl: int = CHECKOUT_LOCK_TTL_SECONDS) -> bool:
        key = self._checkout_key(session_id)
        locked = self.store.acquire(key, owner, ttl)
        logger.info(f"Acquire lock {key}: {'ok' if locked else 'busy'}")
        return locked

    def release_checkout_lock(self, session_id: str, owner: str) -> bool:
        key = self._checkout_key(session_id)
        released = self.store.release(key, owner)
        if not released:
            # lock wygasl (TTL) albo przejal go ktos inny
            logger.warning(f"Lock {key} was not held by {owner}")
        return released
