"""Tests for the progress relay between engine and room."""

from __future__ import annotations

import asyncio

import pytest

from typerace.relay import ProgressRelay
from typerace.room import GameState
from typerace.scoring import ScoringEngine, SessionStatus

pytestmark = pytest.mark.asyncio


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
async def racing(channel, joined):
    """Joined synchronizer whose room is racing."""
    await channel.deliver("game_start", {"startTimestamp": 1})
    await channel.drain()
    joined.room.game_state = GameState.RACING
    return joined


@pytest.fixture
async def relay_setup(racing):
    engine = ScoringEngine("abcd", duration_seconds=30)
    clock = FakeClock()
    relay = ProgressRelay(engine, racing, min_interval=0.5, clock=clock)
    await relay.start()
    yield engine, relay, clock
    await relay.stop()


async def test_keys_are_ignored_until_racing(channel, joined):
    engine = ScoringEngine("abcd", duration_seconds=30)
    relay = ProgressRelay(engine, joined, min_interval=0)
    await relay.start()
    try:
        result = relay.handle_key("a")

        assert result.accepted is False
        assert engine.current_state().status is SessionStatus.IDLE
    finally:
        await relay.stop()


async def test_progress_is_sent_while_racing(channel, racing, relay_setup):
    engine, relay, _ = relay_setup

    relay.handle_key("a")
    await relay.flush()

    [payload] = channel.sent_events("player_update")
    assert payload["progress"] == 25
    assert payload["playerId"] == "user_self"
    assert racing.current_player.progress == 25


async def test_progress_is_throttled(channel, relay_setup):
    engine, relay, clock = relay_setup

    relay.handle_key("a")
    clock.now = 0.1
    relay.handle_key("b")
    clock.now = 0.7
    relay.handle_key("c")
    await relay.flush()

    progress = [p["progress"] for p in channel.sent_events("player_update")]
    assert progress == [25, 75]


async def test_finish_is_reported_exactly_once(channel, racing, relay_setup):
    engine, relay, clock = relay_setup

    for key in "abcd":
        clock.now += 1
        relay.handle_key(key)
    await relay.flush()
    # Later changes of the finished session do not report again.
    engine.handle_key("x")
    engine.tick()
    await relay.flush()

    updates = channel.sent_events("player_update")
    assert updates[-1]["progress"] == 100
    assert len(channel.sent_events("player_finished")) == 1
    assert racing.current_player.is_finished is True

    names = [name for name, _ in channel.sent]
    assert names.index("player_finished") > names.index("player_update")


async def test_final_key_bypasses_throttle(channel, relay_setup):
    engine, relay, _ = relay_setup

    for key in "abcd":
        relay.handle_key(key)
    await relay.flush()

    progress = [p["progress"] for p in channel.sent_events("player_update")]
    assert progress == [25, 100]


async def test_no_finish_when_already_finished(channel, racing, relay_setup):
    engine, relay, _ = relay_setup
    await channel.deliver(
        "player_finished", {"playerId": "user_self", "wpm": 50, "position": 1}
    )
    await channel.drain()

    for key in "abcd":
        relay.handle_key(key)
    await relay.flush()

    assert channel.sent_events("player_finished") == []


async def test_nothing_sent_outside_a_room(channel, sync):
    engine = ScoringEngine("ab", duration_seconds=30)
    relay = ProgressRelay(engine, sync, min_interval=0)
    await relay.start()
    try:
        engine.handle_key("a")
        engine.handle_key("b")
        await relay.flush()
    finally:
        await relay.stop()

    assert channel.sent == []


async def test_timeout_finish_is_reported(channel, racing, relay_setup):
    engine, relay, _ = relay_setup
    engine.reset(duration_seconds=1)

    relay.handle_key("a")
    engine.tick()
    await relay.flush()

    assert engine.current_state().status is SessionStatus.FINISHED
    assert len(channel.sent_events("player_finished")) == 1


async def test_rankings_delegate_to_room(racing, relay_setup):
    _, relay, _ = relay_setup

    assert [r.player.id for r in relay.rankings()] == ["user_self", "peer_a"]
    assert relay.podium() == []


async def test_finish_is_reported_again_after_rejoining_same_room(
    channel, racing, relay_setup, make_player
):
    engine, relay, clock = relay_setup
    for key in "abcd":
        clock.now += 1
        relay.handle_key(key)
    await relay.flush()

    await racing.leave_room()
    engine.reset()
    await channel.deliver(
        "room_joined",
        {"roomId": "room_1", "players": [make_player("user_self", "me"), make_player("peer_a")]},
    )
    await channel.drain()
    racing.room.game_state = GameState.RACING

    for key in "abcd":
        clock.now += 1
        relay.handle_key(key)
    await relay.flush()

    assert len(channel.sent_events("player_finished")) == 2


async def test_throttled_progress_is_sent_after_a_pause(channel, racing):
    engine = ScoringEngine("abcd", duration_seconds=30)
    relay = ProgressRelay(engine, racing, min_interval=0.05)
    await relay.start()
    try:
        relay.handle_key("a")
        relay.handle_key("b")
        await relay.flush()
        assert [p["progress"] for p in channel.sent_events("player_update")] == [25]

        await asyncio.sleep(0.1)
        await relay.flush()
    finally:
        await relay.stop()

    assert [p["progress"] for p in channel.sent_events("player_update")] == [25, 50]
    assert racing.current_player.progress == 50


async def test_held_progress_is_dropped_on_reset(channel, racing):
    engine = ScoringEngine("abcd", duration_seconds=30)
    relay = ProgressRelay(engine, racing, min_interval=0.05)
    await relay.start()
    try:
        relay.handle_key("a")
        relay.handle_key("b")
        engine.reset()

        await asyncio.sleep(0.1)
        await relay.flush()
    finally:
        await relay.stop()

    assert [p["progress"] for p in channel.sent_events("player_update")] == [25]
