"""Session lifecycle tests — state machine, frames, membership notices."""

import json
import random

import pytest

from chatrelay.events.types import (
    CONNECTION_ESTABLISHED,
    ERROR,
    MESSAGE_IN,
    PONG,
    SUBSCRIPTION_COUNT,
    SUBSCRIPTION_SUCCEEDED,
    UNSUBSCRIBED,
)
from chatrelay.realtime.errors import (
    ConnectionNotFound,
    InvalidRequest,
    InvalidTransition,
    TransportFailure,
)
from chatrelay.realtime.registry import Connection, ConnectionState


def _frame(event, **payload):
    return json.dumps({"event": event, "payload": payload})


# ─── State machine ──────────────────────────────────────


def test_connection_state_machine():
    conn = Connection(transport=None)
    assert conn.state == ConnectionState.CONNECTING
    conn.transition(ConnectionState.OPEN)
    conn.transition(ConnectionState.OPEN)
    conn.transition(ConnectionState.CLOSING)
    conn.transition(ConnectionState.CLOSED)
    with pytest.raises(InvalidTransition):
        conn.transition(ConnectionState.OPEN)


def test_any_state_can_abort_to_closed():
    for path in ([], [ConnectionState.OPEN], [ConnectionState.OPEN, ConnectionState.CLOSING]):
        conn = Connection(transport=None)
        for state in path:
            conn.transition(state)
        conn.transition(ConnectionState.CLOSED)
        assert conn.state == ConnectionState.CLOSED


def test_closing_cannot_reopen():
    conn = Connection(transport=None)
    conn.transition(ConnectionState.OPEN)
    conn.transition(ConnectionState.CLOSING)
    with pytest.raises(InvalidTransition):
        conn.transition(ConnectionState.OPEN)


# ─── Connect ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_open_session_registers_and_greets(relay, make_transport):
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)

    assert conn.state == ConnectionState.OPEN
    assert relay.registry.get(conn.id) is conn
    [hello] = transport.events(CONNECTION_ESTABLISHED)
    assert hello["payload"] == {"connection_id": conn.id}


@pytest.mark.asyncio
async def test_open_session_with_dead_transport(relay, make_transport):
    with pytest.raises(TransportFailure):
        await relay.sessions.open_session(make_transport(fail=True))
    assert len(relay.registry) == 0


@pytest.mark.asyncio
async def test_reconnect_gets_new_identity(relay, make_transport):
    first = await relay.sessions.open_session(make_transport())
    await relay.sessions.subscribe(first.id, "programming")
    await relay.sessions.close_session(first.id)

    second = await relay.sessions.open_session(make_transport())
    assert second.id != first.id
    assert second.channels == set()
    assert relay.directory.member_count("programming") == 0


# ─── Subscribe / unsubscribe ────────────────────────────


@pytest.mark.asyncio
async def test_subscribe_updates_both_sides(relay, make_transport):
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)

    count = await relay.sessions.subscribe(conn.id, "programming")

    assert count == 1
    assert conn.channels == {"programming"}
    assert relay.directory.members("programming") == frozenset({conn.id})
    [ok] = transport.events(SUBSCRIPTION_SUCCEEDED)
    assert ok["channel"] == "programming"
    assert ok["payload"]["subscription_count"] == 1


@pytest.mark.asyncio
async def test_duplicate_subscribe_is_idempotent(relay, make_transport):
    conn = await relay.sessions.open_session(make_transport())
    await relay.sessions.subscribe(conn.id, "programming")
    assert await relay.sessions.subscribe(conn.id, "programming") == 1
    assert relay.directory.member_count("programming") == 1


@pytest.mark.asyncio
async def test_subscription_count_pushed_to_members(relay, make_transport):
    ta, tb = make_transport(), make_transport()
    a = await relay.sessions.open_session(ta)
    b = await relay.sessions.open_session(tb)
    await relay.sessions.subscribe(a.id, "programming")
    await relay.sessions.subscribe(b.id, "programming")

    counts = [f["payload"]["subscription_count"] for f in ta.events(SUBSCRIPTION_COUNT)]
    assert counts == [1, 2]

    await relay.sessions.unsubscribe(b.id, "programming")
    assert ta.events(SUBSCRIPTION_COUNT)[-1]["payload"]["subscription_count"] == 1
    assert tb.events(UNSUBSCRIBED)[0]["channel"] == "programming"

    await relay.sessions.close_session(b.id)
    assert len(ta.events(SUBSCRIPTION_COUNT)) == 3


@pytest.mark.asyncio
async def test_failed_subscribe_ack_reports_actual_count(relay, make_transport):
    ta, tb = make_transport(), make_transport()
    a = await relay.sessions.open_session(ta)
    b = await relay.sessions.open_session(tb)
    await relay.sessions.subscribe(a.id, "programming")

    tb.fail = True
    count = await relay.sessions.subscribe(b.id, "programming")

    assert count == 1
    assert relay.directory.member_count("programming") == 1
    assert b.id not in relay.registry
    counts = [f["payload"]["subscription_count"] for f in ta.events(SUBSCRIPTION_COUNT)]
    assert 2 not in counts
    assert counts[-1] == 1


@pytest.mark.asyncio
async def test_failed_unsubscribe_ack_still_notifies_members(relay, make_transport):
    ta, tb = make_transport(), make_transport()
    a = await relay.sessions.open_session(ta)
    b = await relay.sessions.open_session(tb)
    await relay.sessions.subscribe(a.id, "programming")
    await relay.sessions.subscribe(b.id, "programming")

    tb.fail = True
    assert await relay.sessions.unsubscribe(b.id, "programming") == 1

    assert b.id not in relay.registry
    assert ta.events(SUBSCRIPTION_COUNT)[-1]["payload"]["subscription_count"] == 1


@pytest.mark.asyncio
async def test_subscription_count_can_be_disabled(relay, make_transport):
    relay.sessions.notify_subscription_count = False
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)
    await relay.sessions.subscribe(conn.id, "programming")
    assert transport.events(SUBSCRIPTION_COUNT) == []


@pytest.mark.asyncio
async def test_unsubscribe_from_unjoined_channel_is_noop(relay, make_transport):
    conn = await relay.sessions.open_session(make_transport())
    assert await relay.sessions.unsubscribe(conn.id, "programming") == 0


@pytest.mark.asyncio
async def test_channel_limit_per_connection(relay, make_transport):
    relay.sessions.max_channels_per_connection = 2
    conn = await relay.sessions.open_session(make_transport())
    await relay.sessions.subscribe(conn.id, "a")
    await relay.sessions.subscribe(conn.id, "b")
    with pytest.raises(InvalidRequest):
        await relay.sessions.subscribe(conn.id, "c")
    assert conn.channels == {"a", "b"}


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "has space", "x" * 165, None])
async def test_invalid_channel_names_rejected(relay, make_transport, name):
    conn = await relay.sessions.open_session(make_transport())
    with pytest.raises(InvalidRequest):
        await relay.sessions.subscribe(conn.id, name)
    assert conn.channels == set()
    assert len(relay.directory) == 0


@pytest.mark.asyncio
async def test_subscribe_after_close_raises(relay, make_transport):
    conn = await relay.sessions.open_session(make_transport())
    await relay.sessions.close_session(conn.id)
    with pytest.raises(ConnectionNotFound):
        await relay.sessions.subscribe(conn.id, "programming")


# ─── Disconnect ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_close_session_goes_through_closing(relay, make_transport):
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)
    await relay.sessions.subscribe(conn.id, "programming")

    seen = []
    original = conn.transition

    def record(target):
        seen.append(target)
        original(target)

    conn.transition = record
    await relay.sessions.close_session(conn.id)

    assert seen == [ConnectionState.CLOSING, ConnectionState.CLOSED]
    assert transport.closed
    assert relay.directory.member_count("programming") == 0
    assert relay.registry.get(conn.id) is None


@pytest.mark.asyncio
async def test_close_session_is_idempotent(relay, make_transport):
    conn = await relay.sessions.open_session(make_transport())
    await relay.sessions.close_session(conn.id)
    await relay.sessions.close_session(conn.id)
    await relay.sessions.abort_session(conn.id)
    assert conn.state == ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_abort_skips_closing(relay, make_transport):
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)
    await relay.sessions.subscribe(conn.id, "programming")

    await relay.sessions.abort_session(conn.id)

    assert conn.state == ConnectionState.CLOSED
    assert transport.close_code == 1011
    assert relay.directory.member_count("programming") == 0


# ─── Frames ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_handle_frame_subscribe_and_ping(relay, make_transport):
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)

    await relay.sessions.handle_frame(conn.id, _frame("relay:subscribe", channel="programming"))
    await relay.sessions.handle_frame(conn.id, _frame("relay:ping"))
    await relay.sessions.handle_frame(conn.id, _frame("relay:unsubscribe", channel="programming"))

    assert transport.events(SUBSCRIPTION_SUCCEEDED)
    assert transport.events(PONG)
    assert conn.channels == set()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"payload": {}}),
        json.dumps({"event": "relay:subscribe", "payload": "programming"}),
        json.dumps({"event": "relay:subscribe", "payload": {}}),
        json.dumps({"event": "something-else"}),
    ],
)
async def test_bad_frames_get_error_reply(relay, make_transport, raw):
    transport = make_transport()
    conn = await relay.sessions.open_session(transport)

    await relay.sessions.handle_frame(conn.id, raw)

    [error] = transport.events(ERROR)
    assert error["payload"]["code"] == 4000
    assert conn.is_open
    assert conn.channels == set()


@pytest.mark.asyncio
async def test_frame_for_unknown_connection_is_ignored(relay):
    await relay.sessions.handle_frame("gone", _frame("relay:ping"))


# ─── Mirrored membership ────────────────────────────────


def _assert_mirrored(relay, conns, channels):
    for conn in conns:
        registered = conn.id in relay.registry
        if not registered:
            assert conn.channels == set()
        for name in channels:
            in_channel = conn.id in relay.directory.members(name)
            assert in_channel == (name in conn.channels)
            if in_channel:
                assert registered


@pytest.mark.asyncio
async def test_mirrored_membership_holds_for_random_session_traffic(relay, make_transport):
    channels = ["programming", "tech-news-channel", "dad-jokes-channel"]
    rng = random.Random(42)
    conns = []

    for _ in range(400):
        live = [c for c in conns if c.id in relay.registry]
        op = rng.random()
        if not live or op < 0.1:
            conns.append(await relay.sessions.open_session(make_transport()))
        elif op < 0.45:
            await relay.sessions.subscribe(rng.choice(live).id, rng.choice(channels))
        elif op < 0.7:
            await relay.sessions.unsubscribe(rng.choice(live).id, rng.choice(channels))
        elif op < 0.78:
            # Broken socket; the next send to it aborts the session.
            rng.choice(live).transport.fail = True
        elif op < 0.88:
            await relay.engine.publish(rng.choice(channels), MESSAGE_IN, {"message": "hi"})
        elif op < 0.95:
            await relay.sessions.close_session(rng.choice(live).id)
        else:
            await relay.sessions.abort_session(rng.choice(live).id)

        _assert_mirrored(relay, conns, channels)

    assert len(relay.registry) == len([c for c in conns if c.is_open])
