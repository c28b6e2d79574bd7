"""
Inbound WebSocket message schemas.

Each client action is validated against one of these models before any
room or game state is touched. Unknown extra keys (including "type") are
ignored.
"""

from typing import Optional

from pydantic import BaseModel, Field

from constants import GRID_SIZE, MAX_PLAYERS, MIN_PLAYERS, ROOM_CODE_LENGTH


class HostRoomMessage(BaseModel):
    """Create a room and become its host."""
    player_name: str = Field(min_length=1, max_length=32)
    color: str = Field(min_length=1, max_length=32)
    max_players: int = Field(ge=MIN_PLAYERS, le=MAX_PLAYERS)
    password: Optional[str] = Field(default=None, max_length=64)


class JoinRoomMessage(BaseModel):
    """Join an existing room by code."""
    room_code: str = Field(pattern=rf"^\s*\d{{{ROOM_CODE_LENGTH}}}\s*$")
    player_name: str = Field(min_length=1, max_length=32)
    color: str = Field(min_length=1, max_length=32)
    password: Optional[str] = Field(default=None, max_length=64)


class PositionMessage(BaseModel):
    """place_card / discard_and_reveal target."""
    position: int = Field(ge=0, lt=GRID_SIZE)


class ChatMessage(BaseModel):
    """Chat line relayed to the room. Long messages are truncated, not rejected."""
    message: str = Field(min_length=1)
    context: str = "game"
