"""
Centralized configuration for the Skyjo game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.game_rules.end_score)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class GameRules:
    """Tunable game rules."""
    end_score: int = 100        # Game ends once any total reaches this
    initial_reveals: int = 2    # Cards each player reveals at round start
    min_players: int = 2
    max_players: int = 8


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Error tracking
    SENTRY_DSN: str = ""

    # Room settings
    ROOM_CODE_LENGTH: int = 6
    CHAT_MAX_LENGTH: int = 200

    # Game rules
    game_rules: GameRules = field(default_factory=GameRules)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            SENTRY_DSN=get_env("SENTRY_DSN", ""),
            ROOM_CODE_LENGTH=get_env_int("ROOM_CODE_LENGTH", 6),
            CHAT_MAX_LENGTH=get_env_int("CHAT_MAX_LENGTH", 200),
            game_rules=GameRules(
                end_score=get_env_int("GAME_END_SCORE", 100),
                initial_reveals=get_env_int("INITIAL_REVEALS", 2),
                min_players=get_env_int("MIN_PLAYERS", 2),
                max_players=get_env_int("MAX_PLAYERS_PER_ROOM", 8),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
