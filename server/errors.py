"""
Error taxonomy for the Skyjo server.

Every rejected action raises a GameError subclass carrying a stable code.
Errors are reported to the originating connection only and never leave
game or room state modified.
"""

# Validation
INVALID_MESSAGE = "INVALID_MESSAGE"
UNKNOWN_ACTION = "UNKNOWN_ACTION"

# Preconditions
ROOM_FULL = "ROOM_FULL"
WRONG_PASSWORD = "WRONG_PASSWORD"
COLOR_TAKEN = "COLOR_TAKEN"
NOT_ENOUGH_PLAYERS = "NOT_ENOUGH_PLAYERS"
NOT_HOST = "NOT_HOST"
NOT_IN_ROOM = "NOT_IN_ROOM"
ALREADY_IN_ROOM = "ALREADY_IN_ROOM"
GAME_IN_PROGRESS = "GAME_IN_PROGRESS"
WRONG_PHASE = "WRONG_PHASE"
DISCARD_EMPTY = "DISCARD_EMPTY"

# Turn sequencing
NOT_YOUR_TURN = "NOT_YOUR_TURN"
WRONG_STEP = "WRONG_STEP"
INVALID_POSITION = "INVALID_POSITION"

# Lookup
ROOM_NOT_FOUND = "ROOM_NOT_FOUND"

INTERNAL_ERROR = "INTERNAL_ERROR"


class GameError(Exception):
    """Base exception for recoverable game errors."""

    kind = "game_error"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

    def to_dict(self) -> dict:
        """Error payload sent back to the client."""
        return {
            "type": "error",
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
        }


class ValidationError(GameError):
    """Malformed or missing input fields."""

    kind = "validation"


class PreconditionError(GameError):
    """Room full, wrong password, color taken, wrong phase, not host, ..."""

    kind = "precondition"


class TurnError(GameError):
    """Not your turn, wrong micro-step, or invalid grid position."""

    kind = "turn"


class NotFoundError(GameError):
    """Room or player absent."""

    kind = "not_found"


class InternalError(GameError):
    """Unexpected fault caught at the action boundary."""

    kind = "internal"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(INTERNAL_ERROR, message)
