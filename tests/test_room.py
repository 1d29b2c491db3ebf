"""Tests for the room synchronizer reducer and its local actions."""

from __future__ import annotations

import asyncio

import pytest

from typerace.channel import ConnectionStatus
from typerace.room import GameState

pytestmark = pytest.mark.asyncio


async def deliver(channel, event, data=None):
    await channel.deliver(event, data)
    await channel.drain()


class TestMembership:
    """room_joined / player_joined / player_left / room_left."""

    async def test_room_joined_sets_waiting_room_and_self(self, channel, sync, make_player):
        await deliver(
            channel,
            "room_joined",
            {"roomId": "r1", "players": [make_player("user_self", "me"), make_player("p2")]},
        )

        assert sync.room is not None
        assert sync.room.room_id == "r1"
        assert sync.game_state is GameState.WAITING
        assert set(sync.room.players) == {"user_self", "p2"}
        assert sync.current_player is not None
        assert sync.current_player.username == "me"

    async def test_room_joined_without_self_leaves_current_player_empty(
        self, channel, sync, make_player
    ):
        await deliver(channel, "room_joined", {"roomId": "r1", "players": [make_player("p2")]})

        assert sync.room is not None
        assert sync.current_player is None

    async def test_second_room_joined_is_ignored(self, channel, joined, make_player):
        await deliver(channel, "room_joined", {"roomId": "other", "players": [make_player("x")]})

        assert joined.room.room_id == "room_1"
        assert "x" not in joined.room.players

    async def test_duplicate_player_joined_is_idempotent(self, channel, joined, make_player):
        await deliver(channel, "player_joined", make_player("p3", "first"))
        count = len(joined.room.players)

        await deliver(channel, "player_joined", make_player("p3", "refreshed"))

        assert len(joined.room.players) == count
        assert joined.room.players["p3"].username == "refreshed"

    async def test_player_joined_accepts_wrapped_payload(self, channel, joined, make_player):
        await deliver(channel, "player_joined", {"player": make_player("p4")})

        assert "p4" in joined.room.players

    async def test_player_left_removes_player(self, channel, joined):
        await deliver(channel, "player_left", "peer_a")

        assert "peer_a" not in joined.room.players

    async def test_player_left_accepts_object_payload(self, channel, joined):
        await deliver(channel, "player_left", {"playerId": "peer_a"})

        assert "peer_a" not in joined.room.players

    async def test_player_left_for_unknown_id_is_noop(self, channel, joined):
        await deliver(channel, "player_left", "ghost")

        assert len(joined.room.players) == 2

    async def test_events_without_room_are_ignored(self, channel, sync, make_player):
        await deliver(channel, "player_joined", make_player("p2"))
        await deliver(channel, "player_update", {"playerId": "p2", "progress": 10, "wpm": 5})
        await deliver(channel, "game_start", {"startTimestamp": 1})
        await deliver(channel, "game_over", {"finalResults": []})

        assert sync.room is None

    async def test_room_left_clears_room(self, channel, joined):
        await deliver(channel, "room_left", {})

        assert joined.room is None
        assert joined.current_player is None

    async def test_invalid_and_unknown_events_are_dropped(self, channel, joined):
        await deliver(channel, "player_update", {"progress": "fast"})
        await deliver(channel, "mystery_event", {"x": 1})

        assert len(joined.room.players) == 2
        assert joined.room.players["peer_a"].progress == 0


class TestProgressEvents:
    """player_update / player_finished."""

    async def test_player_update_rounds_wpm(self, channel, joined):
        await deliver(channel, "player_update", {"playerId": "peer_a", "progress": 42.5, "wpm": 61.6})

        peer = joined.room.players["peer_a"]
        assert peer.progress == 42.5
        assert peer.wpm == 62

    @pytest.mark.parametrize(("reported", "stored"), [(150, 100), (-10, 0), (55.5, 55.5)])
    async def test_player_update_clamps_progress(self, channel, joined, reported, stored):
        await deliver(channel, "player_update", {"playerId": "peer_a", "progress": reported, "wpm": 10})

        assert joined.room.players["peer_a"].progress == stored

    async def test_progress_may_decrease(self, channel, joined):
        await deliver(channel, "player_update", {"playerId": "peer_a", "progress": 60, "wpm": 10})
        await deliver(channel, "player_update", {"playerId": "peer_a", "progress": 40, "wpm": 10})

        assert joined.room.players["peer_a"].progress == 40

    async def test_player_update_for_unknown_player_is_noop(self, channel, joined):
        await deliver(channel, "player_update", {"playerId": "ghost", "progress": 50, "wpm": 10})

        assert len(joined.room.players) == 2
        assert "ghost" not in joined.room.players

    async def test_player_finished_sets_flags(self, channel, joined):
        await deliver(
            channel, "player_finished", {"playerId": "peer_a", "wpm": 88, "position": 1}
        )

        peer = joined.room.players["peer_a"]
        assert peer.is_finished is True
        assert peer.progress == 100
        assert peer.wpm == 88

    async def test_player_finished_rounds_wpm(self, channel, joined):
        await deliver(
            channel, "player_finished", {"playerId": "peer_a", "wpm": 61.5, "position": 2}
        )

        assert joined.room.players["peer_a"].wpm == 62


class TestGamePhases:
    """game_start countdown and game_over."""

    async def test_game_start_counts_down_then_races(self, channel, joined):
        await deliver(channel, "game_start", {"startTimestamp": 1700000000000})

        assert joined.game_state is GameState.COUNTDOWN
        assert joined.room.start_timestamp == 1700000000000

        await asyncio.sleep(0.02)
        assert joined.game_state is GameState.COUNTDOWN

        await asyncio.sleep(0.06)
        assert joined.game_state is GameState.RACING

    async def test_game_start_accepts_legacy_key(self, channel, joined):
        await deliver(channel, "game_start", {"startTime": 5})

        assert joined.room.start_timestamp == 5

    async def test_game_over_replaces_players(self, channel, joined, make_player):
        final = [
            make_player("peer_a", progress=100, wpm=90, isFinished=True),
            make_player("user_self", "me", progress=100, wpm=70, isFinished=True),
        ]
        await deliver(channel, "game_over", {"winner": final[0], "finalResults": final})

        room = joined.room
        assert room.game_state is GameState.FINISHED
        assert list(room.players) == ["peer_a", "user_self"]
        assert room.winner is not None and room.winner.id == "peer_a"
        assert joined.current_player.wpm == 70

    async def test_game_over_during_countdown_is_not_overridden(self, channel, joined):
        await deliver(channel, "game_start", {"startTimestamp": 1})
        await deliver(channel, "game_over", {"finalResults": []})

        await asyncio.sleep(0.08)

        assert joined.game_state is GameState.FINISHED

    async def test_leave_room_cancels_racing_transition(self, channel, joined):
        await deliver(channel, "game_start", {"startTimestamp": 1})

        await joined.leave_room()
        await asyncio.sleep(0.08)

        assert joined.room is None
        assert joined.current_player is None


class TestLocalActions:
    """join_room / leave_room / send_progress / mark_finished."""

    async def test_join_room_emits_descriptor(self, channel, sync):
        assert await sync.join_room("r9") is True

        [payload] = channel.sent_events("join_room")
        assert payload == {
            "roomId": "r9",
            "player": {
                "id": "user_self",
                "username": "me",
                "progress": 0,
                "wpm": 0,
                "isFinished": False,
            },
        }
        assert sync.room is None

    async def test_leave_room_emits_and_clears(self, channel, joined):
        assert await joined.leave_room() is True

        assert channel.sent_events("leave_room") == [
            {"roomId": "room_1", "playerId": "user_self"}
        ]
        assert joined.room is None

    async def test_leave_room_without_room(self, channel, sync):
        assert await sync.leave_room() is False
        assert channel.sent == []

    async def test_send_progress_is_optimistic_and_clamped(self, channel, joined):
        assert await joined.send_progress(130, 47.6) is True

        [payload] = channel.sent_events("player_update")
        assert payload["roomId"] == "room_1"
        assert payload["playerId"] == "user_self"
        assert payload["progress"] == 100
        assert payload["wpm"] == 48
        assert joined.current_player.progress == 100
        assert joined.current_player.wpm == 48
        # The shared roster only changes on the broker echo.
        assert joined.room.players["user_self"].progress == 0

    async def test_echo_overwrites_optimistic_state(self, channel, joined):
        await joined.send_progress(50, 40)

        await deliver(channel, "player_update", {"playerId": "user_self", "progress": 45, "wpm": 38})

        assert joined.current_player.progress == 45
        assert joined.current_player.wpm == 38

    async def test_mark_finished_uses_last_known_wpm(self, channel, joined):
        await joined.send_progress(90, 55)

        assert await joined.mark_finished() is True

        assert channel.sent_events("player_finished") == [
            {"roomId": "room_1", "playerId": "user_self", "wpm": 55}
        ]
        assert joined.current_player.is_finished is True
        assert joined.current_player.progress == 100

    async def test_mark_finished_without_self_player(self, channel, sync, make_player):
        await deliver(channel, "room_joined", {"roomId": "r1", "players": [make_player("p2")]})

        assert await sync.mark_finished() is False
        assert channel.sent_events("player_finished") == []

    async def test_actions_on_closed_channel_do_not_mutate(self, channel, joined):
        await channel.disconnect()

        assert await joined.send_progress(50, 40) is False
        assert joined.current_player.progress == 0

    async def test_lost_connection_clears_room(self, channel, joined):
        await channel.lose_connection()

        assert channel.status is ConnectionStatus.LOST
        assert joined.room is None

    async def test_interrupted_connection_keeps_room(self, channel, joined):
        channel.interrupt()

        assert joined.is_connected is False
        assert joined.room is not None

        channel.restore()
        assert joined.is_connected is True


class TestRanking:
    """rankings() and podium()."""

    async def test_rankings_sort_by_progress_with_stable_ties(self, channel, sync, make_player):
        players = [
            make_player("a", progress=30),
            make_player("b", progress=70),
            make_player("c", progress=30),
            make_player("d", progress=90),
        ]
        await deliver(channel, "room_joined", {"roomId": "r1", "players": players})

        ranking = [(r.position, r.player.id) for r in sync.rankings()]

        assert ranking == [(1, "d"), (2, "b"), (3, "a"), (4, "c")]
        assert sync.position_of("c") == 4
        assert sync.position_of("ghost") is None

    async def test_podium_empty_until_finished(self, joined):
        assert joined.podium() == []

    async def test_podium_uses_final_results_order(self, channel, joined, make_player):
        final = [
            make_player("x", wpm=50, isFinished=True),
            make_player("y", wpm=90, isFinished=True),
            make_player("z", wpm=70, isFinished=True),
            make_player("w", wpm=99, isFinished=True),
        ]
        await deliver(channel, "game_over", {"finalResults": final})

        assert [p.id for p in joined.podium()] == ["x", "y", "z"]

    async def test_podium_falls_back_to_best_finishers(self, channel, joined, make_player):
        for pid, wpm in [("p1", 40), ("p2", 95), ("p3", 60), ("p4", 80)]:
            await deliver(channel, "player_joined", make_player(pid))
            await deliver(channel, "player_finished", {"playerId": pid, "wpm": wpm, "position": 1})
        # A finished room without the server's final snapshot.
        joined.room.game_state = GameState.FINISHED

        assert [p.id for p in joined.podium()] == ["p2", "p4", "p3"]
