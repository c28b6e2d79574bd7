"""WebSocket message handlers for the Skyjo card game.

Each handler corresponds to a single message type from the client and is
dispatched through the HANDLERS dict by dispatch(), which is also the
error boundary: rejected actions are reported to the caller only, and
unexpected faults become a generic internal error without affecting other
rooms or the connection loop.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from constants import CHAT_MAX_LENGTH
from errors import (
    ALREADY_IN_ROOM,
    INVALID_MESSAGE,
    NOT_HOST,
    NOT_IN_ROOM,
    UNKNOWN_ACTION,
    WRONG_PHASE,
    GameError,
    InternalError,
    PreconditionError,
    ValidationError,
)
from game import GamePhase
from logging_config import player_id_var, room_code_var
from models import ChatMessage, HostRoomMessage, JoinRoomMessage, PositionMessage
from room import Room, RoomManager, RoomPlayer

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: str
    current_room: Optional[Room] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_room(ctx: ConnectionContext) -> Room:
    if not ctx.current_room:
        raise PreconditionError(NOT_IN_ROOM, "Not in a room")
    return ctx.current_room


def _require_host(ctx: ConnectionContext, room: Room, action: str) -> RoomPlayer:
    room_player = room.get_player(ctx.player_id)
    if not room_player or not room_player.is_host:
        raise PreconditionError(NOT_HOST, f"Only the host can {action}")
    return room_player


def _system_chat(message: str) -> dict:
    return {
        "type": "chat_message",
        "kind": "system",
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def broadcast_game_state(room: Room) -> None:
    """Broadcast the snapshot to every member and prompt the current player."""
    await room.broadcast({"type": "game_state", "game_state": room.get_state()})

    if room.game.phase == GamePhase.PLAYING and room.game.pending is None:
        current = room.game.current_player()
        if current:
            await room.send_to(current.id, {"type": "your_turn"})


async def announce_round_result(room: Room) -> None:
    """Send round/game results if the last action ended the round."""
    game = room.game
    if game.phase not in (GamePhase.ROUND_END, GamePhase.GAME_END):
        return

    finished_round = game.round_number if game.phase == GamePhase.GAME_END else game.round_number - 1
    scores = [
        {"id": p.id, "name": p.name, "score": p.score, "total_score": p.total_score}
        for p in game.players
    ]
    logger.info(
        f"Round {finished_round} ended in room {room.code}: "
        + ", ".join(f"{s['name']}={s['score']}" for s in scores),
        extra={"room_code": room.code},
    )
    await room.broadcast({
        "type": "round_ended",
        "round_number": finished_round,
        "scores": scores,
        "game_state": room.get_state(),
    })

    if game.phase == GamePhase.GAME_END:
        await announce_game_end(room)


async def announce_game_end(room: Room) -> None:
    game = room.game
    winner = game.get_player(game.winner_id) if game.winner_id else None
    final_scores = sorted(
        ({"id": p.id, "name": p.name, "total_score": p.total_score} for p in game.players),
        key=lambda s: s["total_score"],
    )
    logger.info(
        f"Game over in room {room.code}, winner: {winner.name if winner else None}",
        extra={"room_code": room.code},
    )
    await room.broadcast({
        "type": "game_ended",
        "winner": (
            {"id": winner.id, "name": winner.name, "total_score": winner.total_score}
            if winner else None
        ),
        "final_scores": final_scores,
        "game_state": room.get_state(),
    })


async def handle_player_leave(room_manager: RoomManager, room: Room, player_id: str) -> None:
    """Remove a player (explicit leave or disconnect) and notify the room."""
    if room_manager.get_room(room.code) is not room:
        return

    async with room.game_lock:
        phase_before = room.game.phase
        room_player = room_manager.leave_room(room.code, player_id)

        if room.is_empty() or not room_player:
            return

        await room.broadcast({
            "type": "player_left",
            "player_id": player_id,
            "player_name": room_player.name,
            "players": room.player_list(),
            "game_state": room.get_state(),
        })
        await room.broadcast(_system_chat(f"{room_player.name} left the game"))

        if phase_before != GamePhase.GAME_END and room.game.phase == GamePhase.GAME_END:
            await announce_game_end(room)
        elif room.game.phase == GamePhase.PLAYING:
            await broadcast_game_state(room)


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_host_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    if ctx.current_room:
        raise PreconditionError(ALREADY_IN_ROOM, "Leave your current room first")

    msg = HostRoomMessage.model_validate(data)
    room = room_manager.create_room(
        ctx.player_id,
        msg.player_name,
        msg.color,
        max_players=msg.max_players,
        password=msg.password,
        websocket=ctx.websocket,
    )
    ctx.current_room = room

    await ctx.websocket.send_json({
        "type": "room_created",
        "room_code": room.code,
        "player_id": ctx.player_id,
        "game_state": room.get_state(),
    })


async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    if ctx.current_room:
        raise PreconditionError(ALREADY_IN_ROOM, "Leave your current room first")

    msg = JoinRoomMessage.model_validate(data)
    room = room_manager.join_room(
        msg.room_code,
        ctx.player_id,
        msg.player_name,
        msg.color,
        password=msg.password,
        websocket=ctx.websocket,
    )
    ctx.current_room = room

    await ctx.websocket.send_json({
        "type": "room_joined",
        "room_code": room.code,
        "player_id": ctx.player_id,
        "game_state": room.get_state(),
    })

    await room.broadcast({
        "type": "player_joined",
        "player_id": ctx.player_id,
        "players": room.player_list(),
        "game_state": room.get_state(),
    })
    await room.broadcast(_system_chat(f"{msg.player_name} joined the game"))


# ---------------------------------------------------------------------------
# Game lifecycle handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)
    _require_host(ctx, room, "start the game")

    async with room.game_lock:
        if room.game.phase != GamePhase.WAITING:
            raise PreconditionError(WRONG_PHASE, "Game already started")
        room.game.start_new_round()
        logger.info(
            f"Game started in room {room.code} with {len(room.players)} players",
            extra={"room_code": room.code},
        )

        await room.broadcast({"type": "game_started", "game_state": room.get_state()})
        await broadcast_game_state(room)


async def handle_next_round(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)
    _require_host(ctx, room, "start the next round")

    async with room.game_lock:
        if room.game.phase != GamePhase.ROUND_END:
            raise PreconditionError(WRONG_PHASE, "The round is not over")
        room.game.start_new_round()
        logger.info(
            f"Round {room.game.round_number} started in room {room.code}",
            extra={"room_code": room.code},
        )

        await room.broadcast({"type": "round_started", "game_state": room.get_state()})
        await broadcast_game_state(room)


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

async def handle_draw_card(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)

    async with room.game_lock:
        card = room.game.draw_card(ctx.player_id)

        if card is None:
            # Nothing left to draw even after reshuffling; the round ended.
            await broadcast_game_state(room)
            await announce_round_result(room)
            return

        await ctx.websocket.send_json({
            "type": "card_drawn",
            "card": card,
            "game_state": room.get_state(),
        })
        await room.broadcast({
            "type": "player_drew_card",
            "player_id": ctx.player_id,
            "game_state": room.get_state(),
        }, exclude=ctx.player_id)


async def handle_take_discard(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)

    async with room.game_lock:
        card = room.game.take_discard(ctx.player_id)

        await room.broadcast({
            "type": "discard_taken",
            "player_id": ctx.player_id,
            "card": card,
            "game_state": room.get_state(),
        })


async def handle_place_card(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)
    msg = PositionMessage.model_validate(data)

    async with room.game_lock:
        discarded = room.game.place_card(ctx.player_id, msg.position)

        await room.broadcast({
            "type": "card_placed",
            "player_id": ctx.player_id,
            "position": msg.position,
            "discarded": discarded,
            "game_state": room.get_state(),
        })
        await broadcast_game_state(room)
        await announce_round_result(room)


async def handle_discard_and_reveal(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)
    msg = PositionMessage.model_validate(data)

    async with room.game_lock:
        pending = room.game.pending
        revealed = room.game.discard_and_reveal(ctx.player_id, msg.position)

        await room.broadcast({
            "type": "card_revealed",
            "player_id": ctx.player_id,
            "position": msg.position,
            "discarded": pending.value,
            "revealed": revealed,
            "game_state": room.get_state(),
        })
        await broadcast_game_state(room)
        await announce_round_result(room)


# ---------------------------------------------------------------------------
# Misc handlers
# ---------------------------------------------------------------------------

async def handle_get_state(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)
    await ctx.websocket.send_json({
        "type": "game_state",
        "game_state": room.get_state(),
        "valid_moves": room.game.valid_moves(ctx.player_id),
    })


async def handle_chat_message(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = _require_room(ctx)
    room_player = room.get_player(ctx.player_id)
    if not room_player:
        raise PreconditionError(NOT_IN_ROOM, "Not in a room")

    msg = ChatMessage.model_validate(data)
    text = msg.message.strip()[:CHAT_MAX_LENGTH]
    if not text:
        raise ValidationError(INVALID_MESSAGE, "Message is empty")

    await room.broadcast({
        "type": "chat_message",
        "kind": "user",
        "player_id": room_player.id,
        "player_name": room_player.name,
        "player_color": room_player.color,
        "message": text,
        "context": msg.context,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    if ctx.current_room:
        room = ctx.current_room
        ctx.current_room = None
        await handle_player_leave(room_manager, room, ctx.player_id)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "host_room": handle_host_room,
    "join_room": handle_join_room,
    "start_game": handle_start_game,
    "next_round": handle_next_round,
    "draw_card": handle_draw_card,
    "take_discard": handle_take_discard,
    "place_card": handle_place_card,
    "discard_and_reveal": handle_discard_and_reveal,
    "get_state": handle_get_state,
    "chat_message": handle_chat_message,
    "leave_room": handle_leave_room,
}


def _describe_validation_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = ".".join(str(loc) for loc in err.get("loc", ())) or "message"
        parts.append(f"{field}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


async def dispatch(data: dict, ctx: ConnectionContext, **deps) -> None:
    """
    Run the handler for one inbound message.

    Every GameError is sent back to the caller as an error message;
    anything unexpected is logged and reported as an internal error.
    """
    msg_type = data.get("type") if isinstance(data, dict) else None
    player_id_var.set(ctx.player_id)
    room_code_var.set(ctx.current_room.code if ctx.current_room else None)

    try:
        handler = HANDLERS.get(msg_type)
        if handler is None:
            raise ValidationError(UNKNOWN_ACTION, f"Unknown message type: {msg_type!r}")
        await handler(data, ctx, **deps)
    except WebSocketDisconnect:
        raise
    except PydanticValidationError as e:
        await ctx.websocket.send_json(
            ValidationError(INVALID_MESSAGE, _describe_validation_error(e)).to_dict()
        )
    except GameError as e:
        logger.debug(f"Rejected {msg_type}: {e}")
        await ctx.websocket.send_json(e.to_dict())
    except Exception:
        logger.exception(f"Unhandled error processing {msg_type}")
        await ctx.websocket.send_json(InternalError().to_dict())
