# storefront/services/session_store.py
import hashlib
import json
from typing import Any, Dict, List

import redis

from storefront.utils.logging import get_logger
from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL

logger = get_logger(__name__)

#LUA porownaj i usun: zwalniamy klucz tylko jesli nadal nalezy do nas
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


def public_session(session: Dict[str, Any]) -> Dict[str, Any]:
    """Sesja do pokazania klientowi: zamiast tokenu jego skrot i ostatnie znaki."""
    token = session["token"]
    view = {k: v for k, v in session.items() if k != "token"}
    view["id"] = hashlib.sha256(token.encode()).hexdigest()[:16]
    view["token_hint"] = f"...{token[-4:]}"
    return view


class SessionStore:
    """
    Key/value z TTL dla sesji (user, cart, checkout). Wartosci jako JSON.

    Odczyty sa ponawiane (redis_retry), zapisy nie - blad zapisu idzie
    od razu do wywolujacego.
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.url = url or REDIS_URL
        self.redis = client

    def init(self) -> None:
        if self.redis is None:
            self.redis = redis.Redis.from_url(self.url, decode_responses=True)
        logger.info("Session store ready")

    def shutdown(self) -> None:
        if self.redis is not None:
            self.redis.close()
            self.redis = None
        logger.info("Session store closed")

    @property
    def client(self) -> redis.Redis:
        if self.redis is None:
            raise RuntimeError("Session store not initialised")
        return self.redis

    @redis_retry()
    def get(self, key: str) -> Any | None:
        raw = self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.client.set(key, json.dumps(value, default=str), ex=max(int(ttl_seconds), 1))

    def delete(self, key: str) -> None:
        self.client.delete(key)

    @redis_retry()
    def scan(self, pattern: str) -> List[str]:
        return list(self.client.scan_iter(match=pattern, count=100))

    def acquire(self, key: str, owner: str, ttl_seconds: int) -> bool:
        #SET key owner NX EX ttl
        return bool(self.client.set(key, owner, nx=True, ex=ttl_seconds))

    def release(self, key: str, owner: str) -> bool:
        return bool(self.client.eval(_RELEASE_LUA, 1, key, owner))
