"""
Test suite for WebSocket message handlers.

Drives full flows through dispatch() with mock WebSockets: hosting,
joining, starting, turn actions, round and game end, chat, leaving, and
the error boundary.

Run with: pytest test_handlers.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import WebSocketDisconnect

import handlers
from constants import CHAT_MAX_LENGTH
from errors import (
    ALREADY_IN_ROOM,
    COLOR_TAKEN,
    INTERNAL_ERROR,
    INVALID_MESSAGE,
    NOT_ENOUGH_PLAYERS,
    NOT_HOST,
    NOT_IN_ROOM,
    NOT_YOUR_TURN,
    ROOM_NOT_FOUND,
    UNKNOWN_ACTION,
    WRONG_PASSWORD,
    WRONG_PHASE,
    WRONG_STEP,
)
from game import GamePhase, Grid
from handlers import ConnectionContext, dispatch
from room import RoomManager


COLORS = ["red", "blue", "green", "yellow"]


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def make_ctx(websocket=None, player_id="test_player", room=None):
    """Create a ConnectionContext with sensible defaults."""
    ws = websocket or MockWebSocket()
    return ConnectionContext(
        websocket=ws,
        connection_id=f"conn_{player_id}",
        player_id=player_id,
        current_room=room,
    )


async def send(ctx, rm, msg_type, **fields):
    await dispatch({"type": msg_type, **fields}, ctx, room_manager=rm)


async def host_room(rm, player_id="p0", name="Alice", color="red", **extra):
    ctx = make_ctx(player_id=player_id)
    fields = {"player_name": name, "color": color, "max_players": 4, **extra}
    await send(ctx, rm, "host_room", **fields)
    return ctx


async def join_room(rm, code, player_id, name, color, **extra):
    ctx = make_ctx(player_id=player_id)
    await send(ctx, rm, "join_room", room_code=code, player_name=name, color=color, **extra)
    return ctx


async def lobby(num_players=2):
    """A room with num_players members, still in the lobby."""
    rm = RoomManager()
    host = await host_room(rm)
    code = host.current_room.code
    ctxs = [host]
    for i in range(1, num_players):
        ctxs.append(await join_room(rm, code, f"p{i}", f"Player {i}", COLORS[i]))
    return rm, host.current_room, ctxs


async def started(num_players=2):
    rm, room, ctxs = await lobby(num_players)
    await send(ctxs[0], rm, "start_game")
    for ctx in ctxs:
        ctx.websocket.messages.clear()
    return rm, room, {ctx.player_id: ctx for ctx in ctxs}


def errors_of(ctx) -> list[dict]:
    return ctx.websocket.messages_of_type("error")


def rig_finishing_turn(room):
    """p0 can complete their grid by placing the top discard at position 8."""
    game = room.game
    game.current_player_index = 0
    game.players[0].grid = Grid.from_values(
        [4, 1, 2, 3, 4, 5, 6, 7, 9, 8, 10, 11],
        revealed=[0, 1, 2, 3, 4, 5, 6, 7, 9, 10, 11],
    )
    game.players[1].grid = Grid.from_values([2] * 12, revealed=[0, 1])
    game.discard_pile.append(4)


# =============================================================================
# Lobby handlers
# =============================================================================

class TestHostRoom:

    @pytest.mark.asyncio
    async def test_host_room(self):
        rm = RoomManager()
        ctx = await host_room(rm)

        msg = ctx.websocket.last_message()
        assert msg["type"] == "room_created"
        assert len(msg["room_code"]) == 6 and msg["room_code"].isdigit()
        assert msg["player_id"] == "p0"
        assert msg["game_state"]["phase"] == "waiting"
        assert msg["game_state"]["players"][0]["is_host"] is True
        assert ctx.current_room is rm.get_room(msg["room_code"])

    @pytest.mark.asyncio
    async def test_missing_name(self):
        rm = RoomManager()
        ctx = make_ctx()
        await send(ctx, rm, "host_room", color="red", max_players=4)

        msg = ctx.websocket.last_message()
        assert msg["type"] == "error"
        assert msg["kind"] == "validation"
        assert msg["code"] == INVALID_MESSAGE
        assert "player_name" in msg["message"]
        assert rm.rooms == {}

    @pytest.mark.asyncio
    async def test_max_players_out_of_range(self):
        rm = RoomManager()
        ctx = await host_room(rm, max_players=9)
        assert ctx.websocket.last_message()["code"] == INVALID_MESSAGE
        assert ctx.current_room is None
        assert rm.rooms == {}

    @pytest.mark.asyncio
    async def test_host_while_in_room(self):
        rm = RoomManager()
        ctx = await host_room(rm)
        await send(ctx, rm, "host_room", player_name="Alice", color="red", max_players=4)
        assert ctx.websocket.last_message()["code"] == ALREADY_IN_ROOM
        assert len(rm.rooms) == 1


class TestJoinRoom:

    @pytest.mark.asyncio
    async def test_join(self):
        rm = RoomManager()
        host = await host_room(rm)
        code = host.current_room.code

        guest = await join_room(rm, code, "p1", "Bob", "blue")

        joined = guest.websocket.messages_of_type("room_joined")
        assert len(joined) == 1
        assert joined[0]["room_code"] == code
        assert [p["id"] for p in joined[0]["game_state"]["players"]] == ["p0", "p1"]
        assert guest.current_room is host.current_room

        notice = host.websocket.messages_of_type("player_joined")
        assert notice[0]["player_id"] == "p1"
        chat = host.websocket.messages_of_type("chat_message")
        assert chat[-1]["kind"] == "system"
        assert "Bob" in chat[-1]["message"]

    @pytest.mark.asyncio
    async def test_join_code_with_whitespace(self):
        rm = RoomManager()
        host = await host_room(rm)
        guest = await join_room(rm, f" {host.current_room.code} ", "p1", "Bob", "blue")
        assert guest.current_room is host.current_room

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12ab56", "12345", "1234567", ""])
    async def test_join_malformed_code(self, code):
        rm = RoomManager()
        guest = await join_room(rm, code, "p1", "Bob", "blue")
        msg = guest.websocket.last_message()
        assert msg["kind"] == "validation"
        assert msg["code"] == INVALID_MESSAGE

    @pytest.mark.asyncio
    async def test_join_unknown_room(self):
        rm = RoomManager()
        guest = await join_room(rm, "000000", "p1", "Bob", "blue")
        msg = guest.websocket.last_message()
        assert msg["kind"] == "not_found"
        assert msg["code"] == ROOM_NOT_FOUND
        assert guest.current_room is None

    @pytest.mark.asyncio
    async def test_join_wrong_password(self):
        rm = RoomManager()
        host = await host_room(rm, password="secret")
        guest = await join_room(rm, host.current_room.code, "p1", "Bob", "blue", password="nope")

        assert guest.websocket.last_message()["code"] == WRONG_PASSWORD
        assert guest.current_room is None
        assert host.websocket.messages_of_type("player_joined") == []

    @pytest.mark.asyncio
    async def test_join_wrong_non_ascii_password(self):
        rm = RoomManager()
        host = await host_room(rm, password="pässwort")
        guest = await join_room(rm, host.current_room.code, "p1", "Bob", "blue", password="sécret")

        msg = guest.websocket.last_message()
        assert msg["kind"] == "precondition"
        assert msg["code"] == WRONG_PASSWORD

    @pytest.mark.asyncio
    async def test_join_color_taken(self):
        rm = RoomManager()
        host = await host_room(rm)
        guest = await join_room(rm, host.current_room.code, "p1", "Bob", "red")
        assert guest.websocket.last_message()["code"] == COLOR_TAKEN


# =============================================================================
# Game lifecycle handlers
# =============================================================================

class TestStartGame:

    @pytest.mark.asyncio
    async def test_start_game(self):
        rm, room, ctxs = await lobby(2)
        await send(ctxs[0], rm, "start_game")

        assert room.game.phase == GamePhase.PLAYING
        for ctx in ctxs:
            started_msgs = ctx.websocket.messages_of_type("game_started")
            assert len(started_msgs) == 1
            assert started_msgs[0]["game_state"]["phase"] == "playing"

        current_id = room.game.current_player().id
        for ctx in ctxs:
            expected = 1 if ctx.player_id == current_id else 0
            assert len(ctx.websocket.messages_of_type("your_turn")) == expected

    @pytest.mark.asyncio
    async def test_state_hides_face_down_cards(self):
        rm, room, ctxs = await started(2)
        await send(ctxs["p0"], rm, "get_state")
        state = ctxs["p0"].websocket.last_message()["game_state"]
        for player in state["players"]:
            hidden = [slot for slot in player["grid"] if not slot["revealed"]]
            assert len(hidden) == 10
            assert all(slot["value"] is None for slot in hidden)

    @pytest.mark.asyncio
    async def test_only_host_can_start(self):
        rm, room, ctxs = await lobby(2)
        await send(ctxs[1], rm, "start_game")
        msg = ctxs[1].websocket.last_message()
        assert msg["kind"] == "precondition"
        assert msg["code"] == NOT_HOST
        assert room.game.phase == GamePhase.WAITING

    @pytest.mark.asyncio
    async def test_needs_two_players(self):
        rm, room, ctxs = await lobby(1)
        await send(ctxs[0], rm, "start_game")
        assert ctxs[0].websocket.last_message()["code"] == NOT_ENOUGH_PLAYERS
        assert room.game.phase == GamePhase.WAITING

    @pytest.mark.asyncio
    async def test_start_twice(self):
        rm, room, ctxs = await started(2)
        await send(ctxs["p0"], rm, "start_game")
        assert ctxs["p0"].websocket.last_message()["code"] == WRONG_PHASE

    @pytest.mark.asyncio
    async def test_start_without_room(self):
        ctx = make_ctx()
        await send(ctx, RoomManager(), "start_game")
        assert ctx.websocket.last_message()["code"] == NOT_IN_ROOM

    @pytest.mark.asyncio
    async def test_join_after_start(self):
        rm, room, ctxs = await started(2)
        late = await join_room(rm, room.code, "late", "Late", "green")
        assert late.websocket.last_message()["kind"] == "precondition"
        assert late.current_room is None

    @pytest.mark.asyncio
    async def test_next_round_while_playing(self):
        rm, room, ctxs = await started(2)
        await send(ctxs["p0"], rm, "next_round")
        assert ctxs["p0"].websocket.last_message()["code"] == WRONG_PHASE


# =============================================================================
# Turn action handlers
# =============================================================================

class TestTurnActions:

    @pytest.mark.asyncio
    async def test_draw_card(self):
        rm, room, ctxs = await started(2)
        current = ctxs[room.game.current_player().id]
        other = next(c for c in ctxs.values() if c is not current)

        await send(current, rm, "draw_card")

        drawn = current.websocket.messages_of_type("card_drawn")
        assert len(drawn) == 1
        assert drawn[0]["card"] == room.game.pending.value
        assert drawn[0]["game_state"]["turn_action"] == "draw"

        seen = other.websocket.messages_of_type("player_drew_card")
        assert len(seen) == 1
        assert "card" not in seen[0]
        assert other.websocket.messages_of_type("card_drawn") == []

    @pytest.mark.asyncio
    async def test_not_your_turn(self):
        rm, room, ctxs = await started(2)
        current = ctxs[room.game.current_player().id]
        other = next(c for c in ctxs.values() if c is not current)
        before = room.get_state()

        await send(other, rm, "draw_card")

        msg = other.websocket.last_message()
        assert msg["kind"] == "turn"
        assert msg["code"] == NOT_YOUR_TURN
        assert errors_of(current) == []
        assert room.get_state() == before

    @pytest.mark.asyncio
    async def test_draw_then_place(self):
        rm, room, ctxs = await started(2)
        current_player = room.game.current_player()
        current = ctxs[current_player.id]
        other = next(c for c in ctxs.values() if c is not current)
        position = current_player.grid.face_down_positions()[0]
        replaced = current_player.grid.slots[position].value

        await send(current, rm, "draw_card")
        await send(current, rm, "place_card", position=position)

        for ctx in ctxs.values():
            placed = ctx.websocket.messages_of_type("card_placed")
            assert len(placed) == 1
            assert placed[0]["position"] == position
            assert placed[0]["discarded"] == replaced
        assert room.game.current_player().id == other.player_id
        assert len(other.websocket.messages_of_type("your_turn")) == 1

    @pytest.mark.asyncio
    async def test_take_discard_then_place(self):
        rm, room, ctxs = await started(2)
        current_player = room.game.current_player()
        current = ctxs[current_player.id]
        top = room.game.discard_top()

        await send(current, rm, "take_discard")
        for ctx in ctxs.values():
            taken = ctx.websocket.messages_of_type("discard_taken")
            assert taken[0]["card"] == top
            assert taken[0]["player_id"] == current.player_id

        await send(current, rm, "place_card", position=current_player.grid.face_down_positions()[0])
        assert errors_of(current) == []

    @pytest.mark.asyncio
    async def test_draw_then_discard_and_reveal(self):
        rm, room, ctxs = await started(2)
        current_player = room.game.current_player()
        current = ctxs[current_player.id]
        position = current_player.grid.face_down_positions()[0]
        hidden = current_player.grid.slots[position].value

        await send(current, rm, "draw_card")
        drawn = room.game.pending.value
        await send(current, rm, "discard_and_reveal", position=position)

        revealed = current.websocket.messages_of_type("card_revealed")
        assert len(revealed) == 1
        assert revealed[0]["discarded"] == drawn
        assert revealed[0]["revealed"] == hidden
        assert room.game.discard_top() == drawn

    @pytest.mark.asyncio
    async def test_reveal_after_take_discard(self):
        rm, room, ctxs = await started(2)
        current_player = room.game.current_player()
        current = ctxs[current_player.id]

        await send(current, rm, "take_discard")
        await send(current, rm, "discard_and_reveal", position=current_player.grid.face_down_positions()[0])

        msg = current.websocket.last_message()
        assert msg["code"] == WRONG_STEP
        assert room.game.pending is not None

    @pytest.mark.asyncio
    async def test_place_without_card(self):
        rm, room, ctxs = await started(2)
        current = ctxs[room.game.current_player().id]
        await send(current, rm, "place_card", position=0)
        assert current.websocket.last_message()["code"] == WRONG_STEP

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [{}, {"position": 12}, {"position": -1}, {"position": "left"}])
    async def test_place_bad_position(self, fields):
        rm, room, ctxs = await started(2)
        current = ctxs[room.game.current_player().id]
        await send(current, rm, "draw_card")
        await send(current, rm, "place_card", **fields)

        msg = current.websocket.last_message()
        assert msg["kind"] == "validation"
        assert msg["code"] == INVALID_MESSAGE
        assert room.game.pending is not None


# =============================================================================
# Round and game end
# =============================================================================

class TestRoundFlow:

    @pytest.mark.asyncio
    async def test_round_end_and_next_round(self):
        rm, room, ctxs = await started(2)
        rig_finishing_turn(room)

        await send(ctxs["p0"], rm, "take_discard")
        await send(ctxs["p0"], rm, "place_card", position=8)

        assert room.game.phase == GamePhase.ROUND_END
        for ctx in ctxs.values():
            ended = ctx.websocket.messages_of_type("round_ended")
            assert len(ended) == 1
            assert ended[0]["round_number"] == 1
            assert {s["id"]: s["score"] for s in ended[0]["scores"]} == {"p0": 53, "p1": 24}
            assert ctx.websocket.messages_of_type("game_ended") == []

        await send(ctxs["p1"], rm, "next_round")
        assert ctxs["p1"].websocket.last_message()["code"] == NOT_HOST

        await send(ctxs["p0"], rm, "next_round")
        assert room.game.phase == GamePhase.PLAYING
        assert room.game.round_number == 2
        started_msg = ctxs["p1"].websocket.messages_of_type("round_started")
        assert started_msg[0]["game_state"]["round_number"] == 2

    @pytest.mark.asyncio
    async def test_game_end(self):
        rm, room, ctxs = await started(2)
        rig_finishing_turn(room)
        room.game.players[0].total_score = 90

        await send(ctxs["p0"], rm, "take_discard")
        await send(ctxs["p0"], rm, "place_card", position=8)

        assert room.game.phase == GamePhase.GAME_END
        ended = ctxs["p1"].websocket.messages_of_type("game_ended")
        assert len(ended) == 1
        assert ended[0]["winner"]["id"] == "p1"
        assert [s["id"] for s in ended[0]["final_scores"]] == ["p1", "p0"]
        assert ended[0]["game_state"]["winner_id"] == "p1"

        await send(ctxs["p0"], rm, "next_round")
        assert ctxs["p0"].websocket.last_message()["code"] == WRONG_PHASE


# =============================================================================
# Misc handlers
# =============================================================================

class TestGetState:

    @pytest.mark.asyncio
    async def test_get_state_with_valid_moves(self):
        rm, room, ctxs = await started(2)
        current = ctxs[room.game.current_player().id]
        await send(current, rm, "get_state")

        msg = current.websocket.last_message()
        assert msg["type"] == "game_state"
        assert msg["game_state"]["room_code"] == room.code
        assert msg["valid_moves"]["can_draw"] is True

    @pytest.mark.asyncio
    async def test_get_state_outside_room(self):
        ctx = make_ctx()
        await send(ctx, RoomManager(), "get_state")
        assert ctx.websocket.last_message()["code"] == NOT_IN_ROOM


class TestChat:

    @pytest.mark.asyncio
    async def test_chat_relayed(self):
        rm, room, ctxs = await lobby(2)
        await send(ctxs[0], rm, "chat_message", message="hello")

        msg = ctxs[1].websocket.last_message()
        assert msg["type"] == "chat_message"
        assert msg["kind"] == "user"
        assert msg["player_name"] == "Alice"
        assert msg["player_color"] == "red"
        assert msg["message"] == "hello"

    @pytest.mark.asyncio
    async def test_chat_truncated(self):
        rm, room, ctxs = await lobby(2)
        await send(ctxs[0], rm, "chat_message", message="x" * (CHAT_MAX_LENGTH + 50))
        assert len(ctxs[1].websocket.last_message()["message"]) == CHAT_MAX_LENGTH

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   "])
    async def test_chat_empty(self, text):
        rm, room, ctxs = await lobby(2)
        ctxs[1].websocket.messages.clear()
        await send(ctxs[0], rm, "chat_message", message=text)

        assert ctxs[0].websocket.last_message()["code"] == INVALID_MESSAGE
        assert ctxs[1].websocket.messages == []


# =============================================================================
# Leaving
# =============================================================================

class TestLeave:

    @pytest.mark.asyncio
    async def test_leave_lobby(self):
        rm, room, ctxs = await lobby(2)
        await send(ctxs[1], rm, "leave_room")

        assert ctxs[1].current_room is None
        left = ctxs[0].websocket.messages_of_type("player_left")
        assert left[0]["player_id"] == "p1"
        assert [p["id"] for p in left[0]["players"]] == ["p0"]
        assert ctxs[0].websocket.last_message()["kind"] == "system"

    @pytest.mark.asyncio
    async def test_host_leaves(self):
        rm, room, ctxs = await lobby(3)
        await send(ctxs[0], rm, "leave_room")

        left = ctxs[1].websocket.messages_of_type("player_left")[0]
        assert [p["is_host"] for p in left["players"]] == [True, False]

        await send(ctxs[1], rm, "start_game")
        assert room.game.phase == GamePhase.PLAYING

    @pytest.mark.asyncio
    async def test_last_member_destroys_room(self):
        rm, room, ctxs = await lobby(1)
        await send(ctxs[0], rm, "leave_room")
        assert rm.rooms == {}

    @pytest.mark.asyncio
    async def test_leave_mid_game_ends_two_player_game(self):
        rm, room, ctxs = await started(2)
        await send(ctxs["p1"], rm, "leave_room")

        assert room.game.phase == GamePhase.GAME_END
        ended = ctxs["p0"].websocket.messages_of_type("game_ended")
        assert ended[0]["winner"]["id"] == "p0"

    @pytest.mark.asyncio
    async def test_leave_between_rounds_ends_two_player_game(self):
        rm, room, ctxs = await started(2)
        rig_finishing_turn(room)
        await send(ctxs["p0"], rm, "take_discard")
        await send(ctxs["p0"], rm, "place_card", position=8)
        assert room.game.phase == GamePhase.ROUND_END

        await send(ctxs["p1"], rm, "leave_room")

        assert room.game.phase == GamePhase.GAME_END
        ended = ctxs["p0"].websocket.messages_of_type("game_ended")
        assert len(ended) == 1
        assert ended[0]["winner"]["id"] == "p0"

    @pytest.mark.asyncio
    async def test_current_player_leaves_mid_turn(self):
        rm, room, ctxs = await started(3)
        leaving = ctxs[room.game.current_player().id]
        await send(leaving, rm, "draw_card")
        for ctx in ctxs.values():
            ctx.websocket.messages.clear()

        await send(leaving, rm, "leave_room")

        assert room.game.phase == GamePhase.PLAYING
        assert room.game.pending is None
        assert room.game.accounted_cards() == 150
        new_current = ctxs[room.game.current_player().id]
        assert new_current is not leaving
        assert len(new_current.websocket.messages_of_type("your_turn")) == 1
        assert leaving.websocket.messages == []

    @pytest.mark.asyncio
    async def test_leave_outside_room_is_noop(self):
        ctx = make_ctx()
        await send(ctx, RoomManager(), "leave_room")
        assert ctx.websocket.messages == []


# =============================================================================
# Dispatch error boundary
# =============================================================================

class TestDispatch:

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        ctx = make_ctx()
        await send(ctx, RoomManager(), "fly_away")
        msg = ctx.websocket.last_message()
        assert msg["kind"] == "validation"
        assert msg["code"] == UNKNOWN_ACTION

    @pytest.mark.asyncio
    async def test_missing_type(self):
        ctx = make_ctx()
        await dispatch({"card": 3}, ctx, room_manager=RoomManager())
        assert ctx.websocket.last_message()["code"] == UNKNOWN_ACTION

    @pytest.mark.asyncio
    async def test_non_object_message(self):
        ctx = make_ctx()
        await dispatch(["draw_card"], ctx, room_manager=RoomManager())
        assert ctx.websocket.last_message()["code"] == UNKNOWN_ACTION

    @pytest.mark.asyncio
    async def test_unexpected_fault_becomes_internal_error(self):
        rm, room, ctxs = await lobby(2)
        broken = AsyncMock(side_effect=KeyError("boom"))

        with patch.dict(handlers.HANDLERS, {"get_state": broken}):
            await send(ctxs[0], rm, "get_state")

        msg = ctxs[0].websocket.last_message()
        assert msg == {
            "type": "error",
            "kind": "internal",
            "code": INTERNAL_ERROR,
            "message": "Internal server error",
        }
        assert rm.get_room(room.code) is room

        await send(ctxs[0], rm, "get_state")
        assert ctxs[0].websocket.last_message()["type"] == "game_state"

    @pytest.mark.asyncio
    async def test_disconnect_propagates(self):
        ctx = make_ctx()
        broken = AsyncMock(side_effect=WebSocketDisconnect())

        with patch.dict(handlers.HANDLERS, {"get_state": broken}):
            with pytest.raises(WebSocketDisconnect):
                await send(ctx, RoomManager(), "get_state")
