"""
Room management for multiplayer Skyjo games.

This module handles room creation, membership, and WebSocket delivery for
multiplayer game sessions.

A Room contains:
    - A unique 6-digit code for joining
    - An ordered collection of RoomPlayers
    - An optional password and a player limit (2-8)
    - A Game instance with the actual game state
    - A lock serializing every game mutation
"""

import asyncio
import logging
import random
import secrets
import string
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from constants import MAX_PLAYERS, MIN_PLAYERS, ROOM_CODE_LENGTH
from errors import (
    ALREADY_IN_ROOM,
    COLOR_TAKEN,
    GAME_IN_PROGRESS,
    INVALID_MESSAGE,
    ROOM_FULL,
    ROOM_NOT_FOUND,
    WRONG_PASSWORD,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from game import Game, GamePhase, Player

logger = logging.getLogger(__name__)


@dataclass
class RoomPlayer:
    """
    A member of a game room (lobby-level representation).

    This is separate from game.Player - RoomPlayer tracks the connection and
    host status, while game.Player tracks the grid and scores.

    Attributes:
        id: Unique player identifier (the connection id).
        name: Display name.
        color: Display color, unique within the room.
        websocket: WebSocket connection (None in tests or before attach).
        is_host: Whether this player controls the game.
    """

    id: str
    name: str
    color: str
    websocket: Optional[WebSocket] = None
    is_host: bool = False


@dataclass
class Room:
    """
    A game room that hosts one Skyjo game.

    Attributes:
        code: 6-digit room code for joining (e.g., "042917").
        players: Dict mapping player IDs to RoomPlayer objects, in join order.
        max_players: Player limit chosen by the host (2-8).
        password: Optional password required to join.
        game: The Game instance containing actual game state.
        game_lock: asyncio.Lock serializing game mutations.
    """

    code: str
    max_players: int = MAX_PLAYERS
    password: Optional[str] = None
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Game = field(default_factory=Game)
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        self.game.max_players = self.max_players

    def add_player(
        self,
        player_id: str,
        name: str,
        color: str,
        websocket: Optional[WebSocket] = None,
    ) -> RoomPlayer:
        """
        Add a player to the room and its game.

        The first player to join becomes the host.

        Raises:
            PreconditionError: The game rejected the player (full, started,
                color in use).
        """
        self.game.add_player(Player(id=player_id, name=name, color=color))

        room_player = RoomPlayer(
            id=player_id,
            name=name,
            color=color,
            websocket=websocket,
            is_host=len(self.players) == 0,
        )
        self.players[player_id] = room_player
        return room_player

    def remove_player(self, player_id: str) -> Optional[RoomPlayer]:
        """
        Remove a player from the room.

        If the host leaves, the earliest remaining member becomes host.

        Returns:
            The removed RoomPlayer, or None if not found.
        """
        if player_id not in self.players:
            return None

        room_player = self.players.pop(player_id)
        self.game.remove_player(player_id)

        if room_player.is_host and self.players:
            next_host = next(iter(self.players.values()))
            next_host.is_host = True
            logger.info(
                f"Host {room_player.name} left, {next_host.name} is now host",
                extra={"room_code": self.code, "player_id": next_host.id},
            )

        return room_player

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        """Get a player by ID, or None if not found."""
        return self.players.get(player_id)

    def is_empty(self) -> bool:
        """Check if the room has no players."""
        return len(self.players) == 0

    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    def host_id(self) -> Optional[str]:
        for player in self.players.values():
            if player.is_host:
                return player.id
        return None

    def color_taken(self, color: str) -> bool:
        return any(p.color == color for p in self.players.values())

    def check_password(self, password: Optional[str]) -> bool:
        """True if the room is open or the password matches."""
        if not self.password:
            return True
        return secrets.compare_digest(self.password.encode(), (password or "").encode())

    def player_list(self) -> list[dict]:
        """
        Get list of members for lobby display.

        Returns:
            List of dicts with id, name, color and is_host.
        """
        return [
            {"id": p.id, "name": p.name, "color": p.color, "is_host": p.is_host}
            for p in self.players.values()
        ]

    def get_state(self) -> dict:
        """Game snapshot annotated with the room code and host."""
        return self.game.get_state(room_code=self.code, host_id=self.host_id())

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to every connected member.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional player ID to skip.
        """
        for player_id, player in list(self.players.items()):
            if player_id != exclude and player.websocket:
                try:
                    await player.websocket.send_json(message)
                except Exception as e:
                    logger.debug(
                        f"Broadcast to {player_id} failed: {e}",
                        extra={"room_code": self.code, "player_id": player_id},
                    )

    async def send_to(self, player_id: str, message: dict) -> None:
        """
        Send a message to a specific member.

        Args:
            player_id: ID of the recipient player.
            message: JSON-serializable message dict.
        """
        player = self.players.get(player_id)
        if player and player.websocket:
            try:
                await player.websocket.send_json(message)
            except Exception as e:
                logger.debug(
                    f"Send to {player_id} failed: {e}",
                    extra={"room_code": self.code, "player_id": player_id},
                )


class RoomManager:
    """
    Registry of all live rooms.

    Owns room lifecycle: creation with unique codes, membership checks on
    join, and destruction when the last member leaves. A single RoomManager
    instance is used by the server and passed to handlers explicitly.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        """Initialize an empty room manager."""
        self.rooms: dict[str, Room] = {}
        self._rng = rng or random.Random()

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a 6-digit room code not used by any live room."""
        for _ in range(max_attempts):
            code = "".join(self._rng.choices(string.digits, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(
        self,
        host_id: str,
        host_name: str,
        host_color: str,
        max_players: int = MAX_PLAYERS,
        password: Optional[str] = None,
        websocket: Optional[WebSocket] = None,
    ) -> Room:
        """
        Create a new room with the caller as host.

        Args:
            host_id: Player ID of the creator.
            host_name: Creator's display name.
            host_color: Creator's color.
            max_players: Player limit (2-8).
            password: Optional join password.
            websocket: Creator's connection.

        Returns:
            The newly created Room.

        Raises:
            ValidationError: max_players out of range.
        """
        if not MIN_PLAYERS <= max_players <= MAX_PLAYERS:
            raise ValidationError(
                INVALID_MESSAGE,
                f"max_players must be between {MIN_PLAYERS} and {MAX_PLAYERS}",
            )

        code = self._generate_code()
        room = Room(code=code, max_players=max_players, password=password or None)
        room.add_player(host_id, host_name, host_color, websocket)
        self.rooms[code] = room

        logger.info(
            f"Room {code} created by {host_name} (max {max_players} players"
            f"{', password protected' if room.password else ''})",
            extra={"room_code": code, "player_id": host_id},
        )
        return room

    def join_room(
        self,
        code: str,
        player_id: str,
        name: str,
        color: str,
        password: Optional[str] = None,
        websocket: Optional[WebSocket] = None,
    ) -> Room:
        """
        Add a player to an existing room.

        Returns:
            The joined Room.

        Raises:
            NotFoundError: No live room with this code.
            PreconditionError: Wrong password, room full, color taken,
                game already started, or player already a member.
        """
        room = self.get_room(code)
        if not room:
            raise NotFoundError(ROOM_NOT_FOUND, "Room not found")
        if not room.check_password(password):
            raise PreconditionError(WRONG_PASSWORD, "Incorrect password")
        if room.is_full():
            raise PreconditionError(ROOM_FULL, "Room is full")
        if room.color_taken(color):
            raise PreconditionError(COLOR_TAKEN, "Color already taken")
        if room.game.phase != GamePhase.WAITING:
            raise PreconditionError(GAME_IN_PROGRESS, "Game already in progress")
        if player_id in room.players:
            raise PreconditionError(ALREADY_IN_ROOM, "Already in this room")

        room.add_player(player_id, name, color, websocket)
        logger.info(
            f"{name} joined room {room.code}",
            extra={"room_code": room.code, "player_id": player_id},
        )
        return room

    def leave_room(self, code: str, player_id: str) -> Optional[RoomPlayer]:
        """
        Remove a player; destroy the room if it is now empty.

        Returns:
            The removed RoomPlayer, or None if they were not a member.

        Raises:
            NotFoundError: No live room with this code.
        """
        room = self.get_room(code)
        if not room:
            raise NotFoundError(ROOM_NOT_FOUND, "Room not found")

        room_player = room.remove_player(player_id)
        if room_player:
            logger.info(
                f"{room_player.name} left room {room.code}",
                extra={"room_code": room.code, "player_id": player_id},
            )

        if room.is_empty():
            self.remove_room(room.code)
            logger.info(f"Room {room.code} deleted - no players", extra={"room_code": room.code})

        return room_player

    def get_room(self, code: str) -> Optional[Room]:
        """
        Get a room by its code.

        Args:
            code: The 6-digit room code (surrounding whitespace ignored).

        Returns:
            The Room if found, None otherwise.
        """
        return self.rooms.get(code.strip())

    def remove_room(self, code: str) -> None:
        """Delete a room (no-op if absent)."""
        if code in self.rooms:
            del self.rooms[code]

    def find_player_room(self, player_id: str) -> Optional[Room]:
        """
        Find which room a player is in.

        Returns:
            The Room containing the player, or None.
        """
        for room in self.rooms.values():
            if player_id in room.players:
                return room
        return None

    def player_count(self) -> int:
        return sum(len(room.players) for room in self.rooms.values())
