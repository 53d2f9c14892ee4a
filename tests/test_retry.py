import pytest
from sqlalchemy.exc import OperationalError
from tenacity import wait_none

from storefront.utils.retry import is_lock_wait_timeout, retry_policy


class _PgError(Exception):
    pgcode = "55P03"


def _operational(orig):
    return OperationalError("UPDATE carts", {}, orig)


def test_lock_wait_detection():
    assert is_lock_wait_timeout(_operational(Exception("(1205, 'Lock wait timeout exceeded')")))
    assert is_lock_wait_timeout(_operational(_PgError("canceling statement")))
    assert is_lock_wait_timeout(_operational(Exception("database is locked")))
    assert not is_lock_wait_timeout(_operational(Exception("no such table: carts")))
    assert not is_lock_wait_timeout(ValueError("deadlock"))


def test_retry_policy_retries_only_matching_errors():
    calls = []

    @retry_policy(max_attempts=3, backoff=wait_none(), retryable=is_lock_wait_timeout)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _operational(Exception("deadlock detected"))
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_retry_policy_gives_up_and_reraises():
    calls = []

    @retry_policy(max_attempts=2, backoff=wait_none(), retryable=lambda exc: isinstance(exc, KeyError))
    def always_fails():
        calls.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        always_fails()
    assert len(calls) == 2


def test_default_policy_does_not_retry():
    calls = []

    @retry_policy(max_attempts=5, backoff=wait_none())
    def fails():
        calls.append(1)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        fails()
    assert calls == [1]
