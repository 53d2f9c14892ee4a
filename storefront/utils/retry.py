# storefront/utils/retry.py
from typing import Callable

from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from sqlalchemy.exc import OperationalError
import requests
import redis

from storefront.utils.settings import LOCK_RETRY_ATTEMPTS

# kody bledow lock wait / deadlock: mysql 1205/1213, postgres 55P03/40P01/40001
_LOCK_WAIT_MARKERS = (
    "lock wait timeout",
    "deadlock",
    "could not obtain lock",
    "database is locked",
    "1205",
    "1213",
    "55p03",
    "40p01",
    "40001",
)


def is_lock_wait_timeout(exc: BaseException) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    text = str(getattr(exc, "orig", exc)).lower()
    code = str(getattr(getattr(exc, "orig", None), "pgcode", "") or "").lower()
    return any(marker in text or marker == code for marker in _LOCK_WAIT_MARKERS)


def retry_policy(
    max_attempts: int,
    backoff=None,
    retryable: Callable[[BaseException], bool] = lambda exc: False,
):
    """
    Jedna polityka retry dla calego serwisu.

    max_attempts - ile prob lacznie
    backoff - strategia czekania tenacity (domyslnie exponential)
    retryable - predykat, ktore wyjatki powtarzamy
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=backoff or wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception(retryable),
    )


def lock_wait_retry():
    return retry_policy(
        max_attempts=LOCK_RETRY_ATTEMPTS,
        backoff=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retryable=is_lock_wait_timeout,
    )


def http_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(requests.ConnectionError),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
