"""
Tests for the session stores.

- InMemorySessionStore: TTL expiry, copy-on-read, per-session locking
- RedisSessionStore: SETEX writes, JSON round-trip, error mapping, Redis locks
"""

import json
import threading
from unittest.mock import MagicMock

import pytest
import redis

from conftest import HOME
from core.session import InMemorySessionStore, RedisSessionStore, create_session_store
from exceptions import PersistenceError, SessionBusy
from models import (
    CartLine,
    FlowState,
    HistoryEntry,
    OrderContext,
    PaymentMethod,
    Session,
    ShippingInfo,
)


def sample_session(session_id="s-1") -> Session:
    ctx = OrderContext(
        cart=[CartLine(product_id="p-mouse", name="Chuột", quantity=2, unit_price=1_500_000)],
        address_options=[HOME],
        selected_address=HOME,
        shipping=ShippingInfo(fee=25000, estimated_days=2),
        payment_method=PaymentMethod.COD,
    )
    return Session(
        session_id=session_id,
        state=FlowState.SUMMARY_SHOWN,
        order_context=ctx,
        history=[HistoryEntry(timestamp=1.0, user_message="COD", bot_response="...", state="SUMMARY_SHOWN", success=True)],
        last_activity=1.0,
        state_changed_at=1.0,
        user_id="user-1",
    )


# ═══════════════════════════════════════════════════════════════
#  In-memory store
# ═══════════════════════════════════════════════════════════════

class TestInMemorySessionStore:

    def test_round_trip(self, clock):
        store = InMemorySessionStore(clock=clock)
        store.save(sample_session())
        assert store.get("s-1") == sample_session()

    def test_returns_copies(self, clock):
        store = InMemorySessionStore(clock=clock)
        store.save(sample_session())
        loaded = store.get("s-1")
        loaded.state = FlowState.IDLE
        assert store.get("s-1").state == FlowState.SUMMARY_SHOWN

    def test_expires_after_ttl(self, clock):
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        store.save(sample_session())

        clock.advance(59)
        assert store.get("s-1") is not None
        clock.advance(1)
        assert store.get("s-1") is None

    def test_save_refreshes_ttl(self, clock):
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        store.save(sample_session())
        clock.advance(50)
        store.save(sample_session())
        clock.advance(50)
        assert store.get("s-1") is not None

    def test_purge_expired(self, clock):
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        store.save(sample_session("a"))
        clock.advance(30)
        store.save(sample_session("b"))
        clock.advance(40)

        assert store.purge_expired() == 1
        assert len(store) == 1
        assert store.get("b") is not None

    def test_delete(self, clock):
        store = InMemorySessionStore(clock=clock)
        store.save(sample_session())
        assert store.delete("s-1") is True
        assert store.delete("s-1") is False
        assert store.get("s-1") is None

    def test_lock_serialises_same_session(self):
        store = InMemorySessionStore(lock_wait_seconds=5)
        order = []
        inside = threading.Event()

        def first():
            with store.lock("s-1"):
                inside.set()
                order.append("first-start")
                threading.Event().wait(0.05)
                order.append("first-end")

        def second():
            inside.wait()
            with store.lock("s-1"):
                order.append("second")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert order == ["first-start", "first-end", "second"]

    def test_lock_times_out_with_session_busy(self):
        store = InMemorySessionStore(lock_wait_seconds=0.01)
        with store.lock("s-1"):
            with pytest.raises(SessionBusy):
                with store.lock("s-1"):
                    pass

    def test_delete_while_locked_keeps_serialising(self):
        store = InMemorySessionStore(lock_wait_seconds=0.05)
        store.save(sample_session())
        entered = []

        def contender():
            try:
                with store.lock("s-1"):
                    entered.append(True)
            except SessionBusy:
                entered.append(False)

        with store.lock("s-1"):
            assert store.delete("s-1") is True
            t = threading.Thread(target=contender)
            t.start()
            t.join(timeout=5)

        assert entered == [False]

    def test_lock_entries_released_after_use(self):
        store = InMemorySessionStore(lock_wait_seconds=0.01)
        for sid in ["a", "b", "c"]:
            with store.lock(sid):
                pass
        with store.lock("a"):
            with pytest.raises(SessionBusy):
                with store.lock("a"):
                    pass
        assert store._locks == {}

    def test_save_purges_expired_sessions(self, clock):
        store = InMemorySessionStore(ttl_seconds=60, purge_interval_seconds=30, clock=clock)
        store.save(sample_session("a"))
        clock.advance(61)
        store.save(sample_session("b"))

        assert len(store) == 1
        assert store.get("b") is not None

    def test_different_sessions_do_not_block(self):
        store = InMemorySessionStore(lock_wait_seconds=0.01)
        with store.lock("a"):
            with store.lock("b"):
                pass


# ═══════════════════════════════════════════════════════════════
#  Redis store
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def redis_client():
    return MagicMock()


@pytest.fixture
def redis_store(redis_client):
    return RedisSessionStore(client=redis_client, prefix="test:", ttl_seconds=1800, lock_timeout=30, lock_wait_seconds=2)


class TestRedisSessionStore:

    def test_save_uses_setex_with_ttl(self, redis_store, redis_client):
        redis_store.save(sample_session())

        key, ttl, payload = redis_client.setex.call_args[0]
        assert key == "test:s-1"
        assert ttl == 1800
        assert json.loads(payload)["state"] == "SUMMARY_SHOWN"
        assert "Nguyễn Huệ" in payload

    def test_get_round_trip(self, redis_store, redis_client):
        redis_store.save(sample_session())
        redis_client.get.return_value = redis_client.setex.call_args[0][2]

        loaded = redis_store.get("s-1")
        redis_client.get.assert_called_with("test:s-1")
        assert loaded == sample_session()

    def test_missing_key_is_none(self, redis_store, redis_client):
        redis_client.get.return_value = None
        assert redis_store.get("nope") is None

    def test_redis_errors_become_persistence_errors(self, redis_store, redis_client):
        redis_client.get.side_effect = redis.exceptions.ConnectionError("refused")
        redis_client.setex.side_effect = redis.exceptions.TimeoutError("slow")

        with pytest.raises(PersistenceError):
            redis_store.get("s-1")
        with pytest.raises(PersistenceError):
            redis_store.save(sample_session())

    def test_delete(self, redis_store, redis_client):
        redis_client.delete.return_value = 1
        assert redis_store.delete("s-1") is True
        redis_client.delete.assert_called_with("test:s-1")

    def test_lock_acquire_and_release(self, redis_store, redis_client):
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True

        with redis_store.lock("s-1"):
            lock.release.assert_not_called()

        redis_client.lock.assert_called_with("test:lock:s-1", timeout=30, blocking_timeout=2)
        lock.release.assert_called_once()

    def test_lock_not_acquired_raises_session_busy(self, redis_store, redis_client):
        redis_client.lock.return_value.acquire.return_value = False
        with pytest.raises(SessionBusy):
            with redis_store.lock("s-1"):
                pass

    def test_expired_lock_release_is_tolerated(self, redis_store, redis_client):
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True
        lock.release.side_effect = redis.exceptions.LockError("not owned")

        with redis_store.lock("s-1"):
            pass

    def test_engine_runs_on_redis_store(self, make_engine, fill_cart, redis_store, redis_client):
        saved = {}
        redis_client.setex.side_effect = lambda key, ttl, value: saved.__setitem__(key, value)
        redis_client.get.side_effect = lambda key: saved.get(key)
        redis_client.lock.return_value.acquire.return_value = True

        engine = make_engine(session_store=redis_store)
        fill_cart("user-1", [("p-mouse", 1)])
        response = engine.handle("đặt hàng", "s-1", {"user_id": "user-1"})

        assert response.state == "CART_VALIDATED"
        assert json.loads(saved["test:s-1"])["state"] == "CART_VALIDATED"


class TestCreateSessionStore:

    def test_memory_backend(self):
        assert isinstance(create_session_store("memory"), InMemorySessionStore)

    def test_redis_backend_builds_client_lazily(self):
        # from_url does not connect until the first command
        store = create_session_store("redis")
        assert isinstance(store, RedisSessionStore)
