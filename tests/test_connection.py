"""Unit tests for ConnectivitySupervisor.

Covers link repair, rate-limited session reconnects, the attempt counter and
the invariant that no session connect happens while the link is down.
"""

import random

import pytest

from owl_beacon.connection import ConnectivityState, ConnectivitySupervisor
from owl_beacon.health import HealthReporter
from owl_beacon.topics import Topics

from conftest import FakeClock, FakeLink, FakeSession


TOPICS = Topics.from_prefix("esp32/test")


def _make_supervisor(link, session, clock, **kwargs):
    return ConnectivitySupervisor(
        link=link,
        session=session,
        topics=TOPICS,
        monitor_interval=kwargs.pop("monitor_interval", 10.0),
        session_retry_interval=kwargs.pop("session_retry_interval", 5.0),
        link_max_tries=kwargs.pop("link_max_tries", 3),
        link_retry_seconds=kwargs.pop("link_retry_seconds", 2.0),
        monotonic=clock,
        sleep=clock.sleep,
        **kwargs,
    )


def test_connectivity_state_enum_values():
    assert ConnectivityState.UNKNOWN.value == "unknown"
    assert ConnectivityState.LINK_DOWN.value == "link_down"
    assert ConnectivityState.LINK_UP_SESSION_DOWN.value == "link_up_session_down"
    assert ConnectivityState.LINK_UP_SESSION_UP.value == "link_up_session_up"


def test_initial_state_is_unknown(fake_link, fake_session, clock):
    supervisor = _make_supervisor(fake_link, fake_session, clock)

    assert supervisor.state is ConnectivityState.UNKNOWN
    assert supervisor.reconnect_attempts == 0
    assert supervisor.link_connected is False


@pytest.mark.asyncio
async def test_poll_waits_for_monitor_interval(fake_link, fake_session, clock):
    supervisor = _make_supervisor(fake_link, fake_session, clock)

    assert await supervisor.poll() is False
    clock.advance(9.9)
    assert await supervisor.poll() is False
    assert fake_session.connect_times == []

    clock.advance(0.2)
    assert await supervisor.poll() is True
    assert supervisor.state is ConnectivityState.LINK_UP_SESSION_UP

    clock.advance(1.0)
    assert await supervisor.poll() is False


@pytest.mark.asyncio
async def test_repair_when_fully_connected_is_idempotent(fake_link, clock):
    session = FakeSession(link=fake_link, clock=clock, connected=True)
    supervisor = _make_supervisor(fake_link, session, clock)

    await supervisor.check_and_repair()
    state = supervisor.state
    await supervisor.check_and_repair()

    assert state is ConnectivityState.LINK_UP_SESSION_UP
    assert supervisor.state is state
    assert fake_link.connect_calls == 0
    assert fake_link.disconnect_calls == 0
    assert session.connect_times == []
    assert session.published == []
    assert supervisor.reconnect_attempts == 0


@pytest.mark.asyncio
async def test_link_loss_unrepaired_skips_session(clock):
    link = FakeLink(connected=False, reconnect_restores=False)
    session = FakeSession(link=link, clock=clock)
    supervisor = _make_supervisor(link, session, clock)

    state = await supervisor.check_and_repair()

    assert state is ConnectivityState.LINK_DOWN
    assert supervisor.link_connected is False
    assert link.disconnect_calls == 1
    assert link.connect_calls == 1
    assert session.connect_times == []


@pytest.mark.asyncio
async def test_link_reporting_unspecified_address_counts_as_down(clock):
    link = FakeLink(address="0.0.0.0", reconnect_restores=False)
    session = FakeSession(link=link, clock=clock)
    supervisor = _make_supervisor(link, session, clock)

    state = await supervisor.check_and_repair()

    assert state is ConnectivityState.LINK_DOWN
    assert session.connect_times == []


@pytest.mark.asyncio
async def test_link_repaired_then_session_reconnected(clock):
    link = FakeLink(connected=False, reconnect_restores=True)
    session = FakeSession(link=link, clock=clock)
    supervisor = _make_supervisor(link, session, clock)

    state = await supervisor.check_and_repair()

    assert link.connect_calls == 1
    assert state is ConnectivityState.LINK_UP_SESSION_UP
    assert supervisor.link_connected is True
    assert session.connects_while_link_down == 0


@pytest.mark.asyncio
async def test_session_connect_announces_online_and_subscribes(fake_link, fake_session, clock):
    supervisor = _make_supervisor(fake_link, fake_session, clock)

    await supervisor.check_and_repair()

    will = fake_session.wills[0]
    assert will.topic == "esp32/test/status"
    assert will.payload == "OFFLINE"
    assert will.retain is True
    assert fake_session.published == [("esp32/test/status", b"ONLINE", 1, True)]
    assert fake_session.subscribed == [("esp32/test/cmd", 0)]


@pytest.mark.asyncio
async def test_session_attempts_are_rate_limited(fake_link, clock):
    session = FakeSession(link=fake_link, clock=clock, connect_succeeds=False)
    supervisor = _make_supervisor(fake_link, session, clock)

    counts = []
    for _ in range(40):
        await supervisor.check_and_repair()
        counts.append(supervisor.reconnect_attempts)
        clock.advance(0.5)

    times = session.connect_times
    assert len(times) == 4
    gaps = [later - earlier for earlier, later in zip(times, times[1:])]
    assert all(gap >= 5.0 for gap in gaps)
    assert counts[-1] == len(times)
    # one increment per attempt, never more
    assert all(b - a in (0, 1) for a, b in zip(counts, counts[1:]))
    assert supervisor.state is ConnectivityState.LINK_UP_SESSION_DOWN


@pytest.mark.asyncio
async def test_success_after_failures_resets_counter(fake_link, clock):
    session = FakeSession(link=fake_link, clock=clock, connect_succeeds=False)
    supervisor = _make_supervisor(fake_link, session, clock)

    await supervisor.check_and_repair()
    clock.advance(5.0)
    await supervisor.check_and_repair()
    assert supervisor.reconnect_attempts == 2

    session.connect_succeeds = True
    clock.advance(5.0)
    await supervisor.check_and_repair()

    assert supervisor.reconnect_attempts == 0
    assert supervisor.state is ConnectivityState.LINK_UP_SESSION_UP

    # session drops again: retry timestamp was cleared, so retry is immediate
    session.connected = False
    session.connect_succeeds = False
    clock.advance(0.1)
    await supervisor.check_and_repair()
    assert supervisor.reconnect_attempts == 1


@pytest.mark.asyncio
async def test_announce_failure_drops_session(fake_link, fake_session, clock):
    fake_session.fail_publish = True
    supervisor = _make_supervisor(fake_link, fake_session, clock)

    state = await supervisor.check_and_repair()

    assert state is ConnectivityState.LINK_UP_SESSION_DOWN
    assert fake_session.disconnect_calls == 1
    assert supervisor.reconnect_attempts == 1


@pytest.mark.asyncio
async def test_never_connects_session_while_link_down():
    rng = random.Random(1234)
    clock = FakeClock()
    link = FakeLink()
    session = FakeSession(link=link, clock=clock)
    supervisor = _make_supervisor(link, session, clock)

    for _ in range(300):
        link.connected = rng.random() < 0.6
        link.reconnect_restores = rng.random() < 0.5
        if rng.random() < 0.3:
            session.connected = False
        session.connect_succeeds = rng.random() < 0.5

        state = await supervisor.check_and_repair()

        if state is ConnectivityState.LINK_DOWN:
            assert not link.connected
        clock.advance(rng.uniform(0.5, 12.0))

    assert session.connects_while_link_down == 0
    assert len(session.connect_times) > 0


@pytest.mark.asyncio
async def test_establish_brings_up_link_and_session(fake_link, fake_session, clock):
    supervisor = _make_supervisor(fake_link, fake_session, clock)

    state = await supervisor.establish()

    assert state is ConnectivityState.LINK_UP_SESSION_UP
    assert fake_link.connect_calls == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_establish_gives_up_after_bounded_tries(clock):
    link = FakeLink(connected=False, reconnect_restores=False)
    session = FakeSession(link=link, clock=clock)
    supervisor = _make_supervisor(link, session, clock, link_max_tries=3)

    state = await supervisor.establish()

    assert state is ConnectivityState.LINK_DOWN
    assert clock.sleeps == [2.0, 2.0, 2.0]
    assert session.connect_times == []


@pytest.mark.asyncio
async def test_health_mirrors_connectivity(fake_link, clock):
    health = HealthReporter()
    session = FakeSession(link=fake_link, clock=clock, connect_succeeds=False)
    supervisor = _make_supervisor(fake_link, session, clock, health=health)

    await supervisor.check_and_repair()
    snapshot = await health.snapshot()

    assert snapshot["status"] == "degraded"
    components = {item["name"]: item for item in snapshot["components"]}
    assert components["link"]["healthy"] is True
    assert components["session"]["healthy"] is False
    assert snapshot["connectivity"] == {
        "state": "link_up_session_down",
        "reconnectAttempts": 1,
    }

    session.connect_succeeds = True
    clock.advance(5.0)
    await supervisor.check_and_repair()
    snapshot = await health.snapshot()
    assert snapshot["status"] == "ok"
