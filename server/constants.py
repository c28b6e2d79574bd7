"""
Card and table constants for Skyjo.

This module is the single source of truth for deck composition and grid
geometry. Tunable rules (end score, player limits) come from config.py.

Deck composition (150 cards):
    - -2: 5 cards
    - -1: 10 cards
    -  0: 15 cards
    - 1 through 12: 10 cards each
"""

from config import config


# =============================================================================
# Deck
# =============================================================================

DECK_COMPOSITION: dict[int, int] = {
    -2: 5,
    -1: 10,
    0: 15,
    **{value: 10 for value in range(1, 13)},
}

DECK_SIZE: int = sum(DECK_COMPOSITION.values())  # 150


# =============================================================================
# Grid
# =============================================================================
#
#   [0] [1] [2]  [3]    <- row 0
#   [4] [5] [6]  [7]    <- row 1
#   [8] [9] [10] [11]   <- row 2
#
# Column c holds positions (c, c+4, c+8).

GRID_COLUMNS: int = 4
GRID_ROWS: int = 3
GRID_SIZE: int = GRID_COLUMNS * GRID_ROWS

COLUMNS: list[tuple[int, ...]] = [
    tuple(col + row * GRID_COLUMNS for row in range(GRID_ROWS))
    for col in range(GRID_COLUMNS)
]


# =============================================================================
# Game Constants
# =============================================================================

GAME_END_SCORE = config.game_rules.end_score
INITIAL_REVEALS = config.game_rules.initial_reveals
MIN_PLAYERS = config.game_rules.min_players
MAX_PLAYERS = config.game_rules.max_players
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
CHAT_MAX_LENGTH = config.CHAT_MAX_LENGTH
