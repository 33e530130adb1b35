import asyncio

import pytest

from approachwatch.core.models import AlertEvent, EventKind
from approachwatch.core.notify import NotificationHub, pack, unpack


def _alert(key: str = "ABC123") -> AlertEvent:
    return AlertEvent(EventKind.APPROACH_ALERT, key, "AFR1", key)


@pytest.mark.asyncio
async def test_broadcast_reaches_every_observer() -> None:
    hub = NotificationHub()
    _, a = hub.connect()
    _, b = hub.connect()

    hub.notify(_alert())

    for sub in (a, b):
        env = await asyncio.wait_for(sub.__anext__(), timeout=1.0)
        assert unpack(env.payload)["type"] == "APPROACH_ALERT"
    assert hub.metrics().deliveries == 2


@pytest.mark.asyncio
async def test_unicast_only_reaches_recipient() -> None:
    hub = NotificationHub()
    oid_a, a = hub.connect()
    _, b = hub.connect()

    hub.notify(AlertEvent(EventKind.ACK_OK, "ABC123", recipient=oid_a))

    assert a.pending() == [{"type": "ACK_OK", "key": "ABC123"}]
    assert b.pending() == []


def test_observer_ids_are_unique() -> None:
    hub = NotificationHub()
    ids = {hub.connect()[0] for _ in range(5)}
    assert len(ids) == 5
    hub.connect("custom")
    with pytest.raises(ValueError):
        hub.connect("custom")


def test_unicast_to_departed_observer_is_dropped() -> None:
    hub = NotificationHub()
    oid, _ = hub.connect()
    hub.disconnect(oid)
    hub.send(oid, {"type": "INIT", "alerts": [], "acked": []})
    assert hub.metrics().deliveries == 0


def test_drop_oldest_when_full() -> None:
    hub = NotificationHub(maxsize=2)
    _, slow = hub.connect()
    _, fast = hub.connect()

    for i in range(3):
        hub.notify(_alert(f"K{i}"))
        if i == 0:
            fast.pending()

    assert [m["key"] for m in slow.pending()] == ["K1", "K2"]
    assert [m["key"] for m in fast.pending()] == ["K1", "K2"]
    assert hub.metrics().drops == 1


@pytest.mark.asyncio
async def test_disconnect_does_not_affect_others() -> None:
    hub = NotificationHub()
    oid_a, a = hub.connect()
    _, b = hub.connect()

    await a.close()
    hub.notify(_alert())

    assert hub.observers() == [b.observer_id]
    assert [m["key"] for m in b.pending()] == ["ABC123"]
    with pytest.raises(StopAsyncIteration):
        await a.__anext__()


@pytest.mark.asyncio
async def test_close_ends_iteration() -> None:
    hub = NotificationHub()
    _, sub = hub.connect()
    hub.notify(_alert())

    received = []

    async def consume() -> None:
        async for env in sub:
            received.append(unpack(env.payload))

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)
    await hub.close()
    await asyncio.wait_for(task, timeout=1.0)

    assert [m["key"] for m in received] == ["ABC123"]
    with pytest.raises(RuntimeError):
        hub.connect()
    # Notifications after close are ignored
    hub.notify(_alert("LATE"))


def test_pack_roundtrip_keeps_strings() -> None:
    msg = {"type": "INIT", "alerts": [{"key": "A", "callsign": None}], "acked": []}
    assert unpack(pack(msg)) == msg
