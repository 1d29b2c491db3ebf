"""Shared pytest fixtures for typerace tests."""

from __future__ import annotations

from typing import Any

import pytest

from typerace.channel import MemoryChannel
from typerace.room import RoomSynchronizer
from typerace.scoring import ScoringEngine

SELF_ID = "user_self"


def _player(player_id: str, username: str | None = None, **fields: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": player_id,
        "username": username or player_id,
        "progress": 0,
        "wpm": 0,
        "isFinished": False,
    }
    data.update(fields)
    return data


@pytest.fixture
def make_player():
    """Factory for wire-format player payloads."""
    return _player


@pytest.fixture
def engine():
    """Engine with a short target and a 30 second duration."""
    return ScoringEngine("cat dog", duration_seconds=30)


@pytest.fixture
async def channel():
    """
    Connected in-memory channel.

    Tests inject broker events with ``deliver()`` followed by ``drain()``.
    """
    ch = MemoryChannel()
    await ch.connect()
    yield ch
    await ch.disconnect()


@pytest.fixture
async def sync(channel):
    """Synchronizer for the local player with a fast countdown."""
    s = RoomSynchronizer(
        channel,
        player_id=SELF_ID,
        username="me",
        countdown_seconds=0.05,
    )
    s.attach()
    yield s
    s.detach()


@pytest.fixture
async def joined(channel, sync):
    """Synchronizer already inside ``room_1`` with one peer."""
    await channel.deliver(
        "room_joined",
        {"roomId": "room_1", "players": [_player(SELF_ID, "me"), _player("peer_a")]},
    )
    await channel.drain()
    return sync
