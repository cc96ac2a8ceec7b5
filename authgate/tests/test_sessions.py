import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from authgate.auth import KeyedLock, PendingSessionStore

NOW = datetime(2026, 1, 2, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return PendingSessionStore(ttl_seconds=300)


def test_mint_and_consume(store):
    token = store.mint("u1", "password", NOW)

    pending = store.consume(token, NOW + timedelta(seconds=10))

    assert pending is not None
    assert pending.uid == "u1"
    assert pending.method == "password"
    assert pending.issued_at == NOW
    assert pending.expires_at == NOW + timedelta(seconds=300)


def test_tokens_are_single_use(store):
    token = store.mint("u1", "password", NOW)
    assert store.consume(token, NOW) is not None
    assert store.consume(token, NOW) is None


def test_expired_token_rejected(store):
    token = store.mint("u1", "biometric", NOW)
    assert store.consume(token, NOW + timedelta(seconds=300)) is None
    assert len(store) == 0


def test_unknown_and_empty_tokens(store):
    assert store.consume("nope", NOW) is None
    assert store.consume("", NOW) is None
    assert store.consume(None, NOW) is None


def test_tokens_are_distinct_from_uid(store):
    first = store.mint("u1", "password", NOW)
    second = store.mint("u1", "password", NOW)
    assert first != second
    assert "u1" not in (first, second)


def test_expired_entries_are_purged(store):
    store.mint("u1", "password", NOW)
    store.mint("u2", "password", NOW + timedelta(seconds=400))
    assert len(store) == 1


def test_invalid_ttl():
    with pytest.raises(ValueError):
        PendingSessionStore(ttl_seconds=0)


def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    active = {"count": 0, "max": 0}
    guard = threading.Lock()

    def worker():
        with locks.hold("u1"):
            with guard:
                active["count"] += 1
                active["max"] = max(active["max"], active["count"])
            time.sleep(0.01)
            with guard:
                active["count"] -= 1

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert active["max"] == 1
    assert locks._locks == {}
