from unittest.mock import MagicMock, call

import pytest
import redis

from storefront.services.lock_service import LockService
from storefront.services.session_store import SessionStore
from storefront.services.user_session_manager import UserSessionManager


def test_user_sessions_roundtrip_and_logout_everywhere(store):
    sessions = UserSessionManager(store)
    first = sessions.create_session(1)
    second = sessions.create_session(1)
    other = sessions.create_session(2)

    assert sessions.get_user_id(first["token"]) == 1
    assert {s["token"] for s in sessions.find_sessions_by_user(1)} == {first["token"], second["token"]}

    assert sessions.delete_all_for_user(1) == 2
    assert sessions.get_user_id(first["token"]) is None
    assert sessions.get_user_id(other["token"]) == 2


def test_session_store_encodes_json_and_locks_atomically():
    client = MagicMock()
    client.get.return_value = '{"user_id": 7}'
    client.set.return_value = True
    client.eval.return_value = 1
    store = SessionStore(client=client)

    store.set("user_session:t", {"user_id": 7}, 60)
    assert client.set.call_args == call("user_session:t", '{"user_id": 7}', ex=60)
    assert store.get("user_session:t") == {"user_id": 7}

    assert store.acquire("lock:checkout:s1", "owner-a", 30)
    assert client.set.call_args == call("lock:checkout:s1", "owner-a", nx=True, ex=30)
    assert store.release("lock:checkout:s1", "owner-a")
    assert client.eval.call_args.args[1:] == (1, "lock:checkout:s1", "owner-a")


def test_session_store_retries_reads_but_not_writes():
    client = MagicMock()
    client.get.side_effect = [redis.ConnectionError("down"), None]
    client.set.side_effect = redis.ConnectionError("down")
    store = SessionStore(client=client)

    assert store.get("cart_session:x") is None
    assert client.get.call_count == 2
    with pytest.raises(redis.ConnectionError):
        store.set("cart_session:x", {}, 10)
    assert client.set.call_count == 1


def test_checkout_lock_is_released_only_by_owner(store):
    locks = LockService(store)

    assert locks.acquire_checkout_lock("s1", "owner-a")
    assert not locks.acquire_checkout_lock("s1", "owner-b")
    assert not locks.release_checkout_lock("s1", "owner-b")
    assert locks.release_checkout_lock("s1", "owner-a")
    assert locks.acquire_checkout_lock("s1", "owner-b")
