import asyncio

import pytest

from storefront.checkout.models import CheckoutState
from storefront.checkout.service import CheckoutSession
from storefront.checkout.sessions import CheckoutSessionStore, SessionForbidden, SessionNotFound


def _session(commerce_api, gateway, make_item):
    return CheckoutSession.buy_now(make_item(), commerce_api, gateway)


def test_entry_is_bound_to_owner(commerce_api, gateway, make_item):
    store = CheckoutSessionStore()
    session = store.add("alice", _session(commerce_api, gateway, make_item), ports="p")
    assert store.entry(session.id, "alice") == ("alice", session, "p")
    with pytest.raises(SessionForbidden):
        store.get(session.id, "bob")
    with pytest.raises(SessionNotFound):
        store.get("missing", "alice")

def test_new_session_replaces_idle_ones(commerce_api, gateway, make_item):
    store = CheckoutSessionStore()
    first = store.add("alice", _session(commerce_api, gateway, make_item))
    other = store.add("bob", _session(commerce_api, gateway, make_item))
    second = store.add("alice", _session(commerce_api, gateway, make_item))
    assert len(store) == 2
    with pytest.raises(SessionNotFound):
        store.get(first.id, "alice")
    assert store.get(second.id, "alice") is second
    assert store.get(other.id, "bob") is other

def test_busy_sessions_survive(commerce_api, gateway, make_item):
    store = CheckoutSessionStore()
    paying = store.add("alice", _session(commerce_api, gateway, make_item))
    paying.state = CheckoutState.PAYMENT_PENDING
    store.add("alice", _session(commerce_api, gateway, make_item))
    assert store.get(paying.id, "alice") is paying
    assert store.discard(paying.id, "alice") is None

def test_discard_idle_session(commerce_api, gateway, make_item):
    store = CheckoutSessionStore()
    session = store.add("alice", _session(commerce_api, gateway, make_item))
    assert store.discard(session.id, "alice") is session
    assert len(store) == 0


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_idle_sessions_expire(commerce_api, gateway, make_item):
    clock = FakeClock()
    store = CheckoutSessionStore(ttl_seconds=60, clock=clock)
    stale = store.add("alice", _session(commerce_api, gateway, make_item))
    fresh = store.add("bob", _session(commerce_api, gateway, make_item))

    clock.now += 45
    store.get(fresh.id, "bob")
    clock.now += 30

    assert store.get(fresh.id, "bob") is fresh
    with pytest.raises(SessionNotFound):
        store.get(stale.id, "alice")
    assert len(store) == 1

def test_in_flight_session_does_not_expire(commerce_api, gateway, make_item):
    clock = FakeClock()
    store = CheckoutSessionStore(ttl_seconds=60, clock=clock)
    verifying = store.add("alice", _session(commerce_api, gateway, make_item))
    verifying.state = CheckoutState.VERIFYING
    clock.now += 600
    assert store.evict_expired() == 0
    assert store.get(verifying.id, "alice") is verifying

@pytest.mark.asyncio
async def test_expired_pending_payment_is_cancelled(commerce_api, gateway, make_item, make_success, shipping):
    commerce_api.responses = [make_success()]
    clock = FakeClock()
    store = CheckoutSessionStore(ttl_seconds=60, clock=clock)
    session = store.add("alice", _session(commerce_api, gateway, make_item))
    assert await session.submit(shipping) == CheckoutState.PAYMENT_PENDING
    task = session._payment_task

    clock.now += 61
    assert store.evict_expired() == 1
    with pytest.raises(asyncio.CancelledError):
        await task

    assert task.cancelled()
    assert len(store) == 0
    assert commerce_api.verified == []
