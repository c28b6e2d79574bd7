"""Inbound message models for the Skyjo server."""

from .actions import ChatMessage, HostRoomMessage, JoinRoomMessage, PositionMessage

__all__ = [
    "ChatMessage",
    "HostRoomMessage",
    "JoinRoomMessage",
    "PositionMessage",
]
