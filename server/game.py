"""
Game logic for Skyjo.

This module implements the core game mechanics for Skyjo, including the
deck, the 12-slot player grid, turn sequencing, column clearing, scoring,
and multi-round game flow.

Skyjo Rules Summary:
    - Each player has 12 cards in a 4x3 grid, all dealt face-down
    - Two random cards per player are revealed at the start of a round
    - The player with the highest revealed pair starts
    - On your turn: draw from the deck or take the top discard, then either
      place it in your grid (discarding the card it replaces) or, for a deck
      draw only, discard it and reveal one of your face-down cards
    - A column of three revealed, equal cards is removed from the grid
    - The round ends when the acting player has no face-down cards left
    - The game ends when any total reaches 100; the lowest total wins

Card Layout:
    [0] [1] [2]  [3]
    [4] [5] [6]  [7]
    [8] [9] [10] [11]

    Columns: (0,4,8), (1,5,9), (2,6,10), (3,7,11)
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import (
    COLUMNS,
    DECK_COMPOSITION,
    GAME_END_SCORE,
    GRID_SIZE,
    INITIAL_REVEALS,
    MAX_PLAYERS,
    MIN_PLAYERS,
)
from errors import (
    COLOR_TAKEN,
    DISCARD_EMPTY,
    GAME_IN_PROGRESS,
    INVALID_POSITION,
    NOT_ENOUGH_PLAYERS,
    NOT_YOUR_TURN,
    ROOM_FULL,
    WRONG_PHASE,
    WRONG_STEP,
    PreconditionError,
    TurnError,
)


class GamePhase(Enum):
    """
    Engine lifecycle phases.

    Flow: WAITING -> PLAYING -> ROUND_END -> PLAYING ... -> GAME_END
    """

    WAITING = "waiting"        # Lobby, waiting for players to join
    PLAYING = "playing"        # Turns in progress
    ROUND_END = "round_end"    # Round scored, waiting for the next round
    GAME_END = "game_end"      # A total reached the end score; terminal


class CardSource(str, Enum):
    """Where the pending card of the current turn came from."""

    DRAW = "draw"
    DISCARD = "discard"


@dataclass(frozen=True)
class PendingCard:
    """
    A card acquired by the current player and not yet resolved.

    Exists only between the acquire step (draw/take discard) and the
    resolve step (place/discard and reveal) of a single turn.
    """

    value: int
    source: CardSource


# =============================================================================
# Deck
# =============================================================================

class Deck:
    """
    The draw pile: 150 numbered cards, shuffled once at creation.

    Cards are plain ints; identity beyond value is never needed.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        """
        Build and shuffle a fresh deck.

        Args:
            rng: Random source. Pass a seeded random.Random for
                deterministic tests.
        """
        self.rng = rng or random.Random()
        self.cards: list[int] = [
            value
            for value, count in DECK_COMPOSITION.items()
            for _ in range(count)
        ]
        self.shuffle()

    def shuffle(self) -> None:
        """Uniformly permute the remaining cards (Fisher-Yates)."""
        self.rng.shuffle(self.cards)

    def draw(self) -> Optional[int]:
        """
        Draw the top card of the pile.

        Returns:
            The card value, or None if the pile is empty.
        """
        if self.cards:
            return self.cards.pop()
        return None

    def cards_remaining(self) -> int:
        """Return the number of cards left in the pile."""
        return len(self.cards)

    def add_cards(self, cards: list[int]) -> None:
        """
        Add cards to the pile and shuffle.

        Used when reshuffling the discard pile back into the deck.
        """
        self.cards.extend(cards)
        self.shuffle()


# =============================================================================
# Grid
# =============================================================================

@dataclass
class Slot:
    """A single grid position holding a card value and its face-up state."""

    value: int
    revealed: bool = False

    def to_client_dict(self) -> dict:
        """Hide the value of a face-down card."""
        return {
            "revealed": self.revealed,
            "cleared": False,
            "value": self.value if self.revealed else None,
        }


CLEARED_SLOT = {"revealed": True, "cleared": True, "value": None}


class Grid:
    """
    A player's 12-slot layout.

    A slot is None once its column has been cleared. Cleared slots count
    as revealed, never score, and can no longer be placed on or revealed.
    """

    def __init__(self, slots: Optional[list[Optional[Slot]]] = None) -> None:
        self.slots: list[Optional[Slot]] = slots if slots is not None else []

    @classmethod
    def from_values(
        cls,
        values: list[Optional[int]],
        revealed: Optional[list[int]] = None,
    ) -> "Grid":
        """
        Build a grid from explicit values (None marks a cleared slot).

        Args:
            values: 12 card values.
            revealed: Positions to reveal. None reveals every slot.
        """
        slots: list[Optional[Slot]] = []
        for position, value in enumerate(values):
            if value is None:
                slots.append(None)
                continue
            is_revealed = revealed is None or position in revealed
            slots.append(Slot(value, is_revealed))
        return cls(slots)

    def deal(self, deck: Deck) -> None:
        """Take 12 cards from the deck into positions 0..11, face-down."""
        self.slots = []
        for _ in range(GRID_SIZE):
            card = deck.draw()
            if card is None:
                raise RuntimeError("Deck exhausted while dealing")
            self.slots.append(Slot(card))

    def reveal_initial(
        self,
        count: int = INITIAL_REVEALS,
        rng: Optional[random.Random] = None,
    ) -> list[int]:
        """
        Reveal `count` distinct random positions at round start.

        Returns:
            The revealed positions.
        """
        rng = rng or random.Random()
        positions = rng.sample(self.face_down_positions(), count)
        for position in positions:
            self.slots[position].revealed = True
        return positions

    def can_place(self, position: int) -> bool:
        """Whether a card may be placed at `position`."""
        return 0 <= position < len(self.slots) and self.slots[position] is not None

    def place(self, position: int, card: int) -> int:
        """
        Put a card at `position`, face-up.

        Args:
            position: Index 0-11.
            card: The card value to place.

        Returns:
            The value of the card that was replaced (for the discard pile).

        Raises:
            TurnError: If the position is out of range or cleared.
        """
        if not self.can_place(position):
            raise TurnError(INVALID_POSITION, f"Cannot place a card at position {position}")
        old_value = self.slots[position].value
        self.slots[position] = Slot(card, revealed=True)
        return old_value

    def reveal(self, position: int) -> bool:
        """
        Flip a face-down card.

        Returns:
            True if flipped; False if out of range, cleared or already up.
        """
        if not self.can_place(position) or self.slots[position].revealed:
            return False
        self.slots[position].revealed = True
        return True

    def check_column_clear(self) -> list[int]:
        """
        Clear every column of three revealed, equal cards.

        Columns are disjoint so the order of checks does not matter, and a
        cleared column never matches again.

        Returns:
            Indices of the columns cleared by this call.
        """
        cleared = []
        for col, positions in enumerate(COLUMNS):
            slots = [self.slots[pos] for pos in positions]
            if any(slot is None or not slot.revealed for slot in slots):
                continue
            if len({slot.value for slot in slots}) == 1:
                for pos in positions:
                    self.slots[pos] = None
                cleared.append(col)
        return cleared

    def is_complete(self) -> bool:
        """True if every slot is either cleared or revealed."""
        return all(slot is None or slot.revealed for slot in self.slots)

    def reveal_all(self) -> None:
        """Turn every remaining card face-up for end-of-round scoring."""
        for slot in self.slots:
            if slot is not None:
                slot.revealed = True

    def score(self) -> int:
        """Sum of all uncleared card values (revealed or not)."""
        return sum(slot.value for slot in self.slots if slot is not None)

    def revealed_sum(self) -> int:
        """Sum of face-up card values, used to pick the starting player."""
        return sum(slot.value for slot in self.slots if slot is not None and slot.revealed)

    def face_down_positions(self) -> list[int]:
        """Positions of uncleared cards that are still face-down."""
        return [
            pos for pos, slot in enumerate(self.slots)
            if slot is not None and not slot.revealed
        ]

    def slot_count(self) -> int:
        """Number of uncleared slots (cards still on the table)."""
        return sum(1 for slot in self.slots if slot is not None)

    def to_client_list(self) -> list[dict]:
        """Client view of the 12 slots with face-down values hidden."""
        return [
            CLEARED_SLOT.copy() if slot is None else slot.to_client_dict()
            for slot in self.slots
        ]


# =============================================================================
# Player
# =============================================================================

@dataclass
class Player:
    """
    A player in a Skyjo game.

    Attributes:
        id: Stable session identity (the connection id).
        name: Display name.
        color: Display color, unique within a room.
        grid: The player's 12-slot grid.
        score: Points scored in the last completed round.
        total_score: Cumulative points across all rounds.
    """

    id: str
    name: str
    color: str = ""
    grid: Grid = field(default_factory=Grid)
    score: int = 0
    total_score: int = 0


# =============================================================================
# Game
# =============================================================================

@dataclass
class Game:
    """
    Authoritative game state and rules for one room.

    Manages:
        - Player management (add/remove/lookup)
        - Deck and discard pile
        - The two-step turn (acquire, then resolve)
        - Column clearing, round scoring and game end

    Every action either applies completely or raises a GameError before
    touching any state.

    Attributes:
        players: Players in join order.
        deck: The draw pile (None until the first round).
        discard_pile: Face-up discards, top is last.
        current_player_index: Index of the player whose turn it is.
        round_number: Current round (1-indexed).
        phase: Current engine phase.
        pending: Card acquired this turn and not yet resolved.
        retired_cards: Cards removed from the table this round (cleared
            columns and departed players' grids).
        winner_id: Lowest total once the game has ended.
    """

    players: list[Player] = field(default_factory=list)
    deck: Optional[Deck] = None
    discard_pile: list[int] = field(default_factory=list)
    current_player_index: int = 0
    round_number: int = 1
    phase: GamePhase = GamePhase.WAITING
    pending: Optional[PendingCard] = None
    retired_cards: int = 0
    winner_id: Optional[str] = None
    max_players: int = MAX_PLAYERS
    min_players: int = MIN_PLAYERS
    end_score: int = GAME_END_SCORE
    initial_reveals: int = INITIAL_REVEALS
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, player: Player) -> None:
        """
        Add a player to the game.

        Raises:
            PreconditionError: If the game already started, is full, or the
                player's color is already used.
        """
        if self.phase != GamePhase.WAITING:
            raise PreconditionError(GAME_IN_PROGRESS, "Game already in progress")
        if len(self.players) >= self.max_players:
            raise PreconditionError(ROOM_FULL, "Room is full")
        if player.color and any(p.color == player.color for p in self.players):
            raise PreconditionError(COLOR_TAKEN, "Color already taken")
        self.players.append(player)

    def remove_player(self, player_id: str) -> Optional[Player]:
        """
        Remove a player from the game by ID.

        The departing player's cards (and any card they were holding) leave
        the table. If they held the turn, the turn passes to the next player.
        If fewer than the minimum number of players remain during or between
        rounds, the game ends.

        Args:
            player_id: The unique ID of the player to remove.

        Returns:
            The removed Player, or None if not found.
        """
        for index, player in enumerate(self.players):
            if player.id == player_id:
                break
        else:
            return None

        removed = self.players.pop(index)
        self.retired_cards += removed.grid.slot_count()

        if self.phase == GamePhase.PLAYING:
            if index == self.current_player_index:
                if self.pending is not None:
                    self.retired_cards += 1
                    self.pending = None
                if self.players:
                    self.current_player_index = index % len(self.players)
            elif index < self.current_player_index:
                self.current_player_index -= 1

        if (
            self.phase in (GamePhase.PLAYING, GamePhase.ROUND_END)
            and len(self.players) < self.min_players
        ):
            self._end_game()

        if not self.players or self.current_player_index >= len(self.players):
            self.current_player_index = 0

        return removed

    def get_player(self, player_id: str) -> Optional[Player]:
        """Find a player by ID, or None."""
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players:
            return self.players[self.current_player_index]
        return None

    def can_start_game(self) -> bool:
        return self.min_players <= len(self.players) <= self.max_players

    # -------------------------------------------------------------------------
    # Round Lifecycle
    # -------------------------------------------------------------------------

    def start_new_round(self) -> None:
        """
        Deal a new round.

        Creates a fresh deck, deals and reveals the initial cards for every
        player, turns one card onto the discard pile, and gives the first
        turn to the player with the highest revealed sum.

        Raises:
            PreconditionError: Wrong phase or player count out of range.
        """
        if self.phase not in (GamePhase.WAITING, GamePhase.ROUND_END):
            raise PreconditionError(WRONG_PHASE, f"Cannot start a round during {self.phase.value}")
        if not self.can_start_game():
            raise PreconditionError(
                NOT_ENOUGH_PLAYERS,
                f"Need between {self.min_players} and {self.max_players} players to start",
            )

        self.deck = Deck(self.rng)
        self.discard_pile = []
        self.pending = None
        self.retired_cards = 0
        self.winner_id = None

        for player in self.players:
            player.grid = Grid()
            player.grid.deal(self.deck)
            player.grid.reveal_initial(self.initial_reveals, self.rng)
            player.score = 0

        self.discard_pile.append(self.deck.draw())
        self.current_player_index = self.determine_starting_player()
        self.phase = GamePhase.PLAYING

    def determine_starting_player(self) -> int:
        """
        Index of the player with the highest sum of revealed cards.

        Ties go to the player who joined first.
        """
        best_index = 0
        best_sum = None
        for index, player in enumerate(self.players):
            revealed = player.grid.revealed_sum()
            if best_sum is None or revealed > best_sum:
                best_index, best_sum = index, revealed
        return best_index

    # -------------------------------------------------------------------------
    # Turn Actions
    # -------------------------------------------------------------------------

    def _require_turn(self, player_id: str) -> Player:
        """Return the acting player, or raise if they may not act now."""
        if self.phase != GamePhase.PLAYING:
            raise PreconditionError(WRONG_PHASE, "Game is not in progress")
        player = self.current_player()
        if not player or player.id != player_id:
            raise TurnError(NOT_YOUR_TURN, "Not your turn")
        return player

    def draw_card(self, player_id: str) -> Optional[int]:
        """
        Draw the top card of the deck (acquire step).

        If the deck is empty, every discard except the top one is shuffled
        back into it. If that leaves nothing to draw, the round ends.

        Args:
            player_id: ID of the player drawing.

        Returns:
            The drawn card, or None if the round ended because no cards
            were left to draw.

        Raises:
            TurnError: Not the current player, or a card is already held.
        """
        self._require_turn(player_id)
        if self.pending is not None:
            raise TurnError(WRONG_STEP, "You already have a card to play")

        card = self.deck.draw()
        if card is None:
            card = self._reshuffle_discard_pile()
        if card is None:
            self._end_round()
            return None

        self.pending = PendingCard(card, CardSource.DRAW)
        return card

    def take_discard(self, player_id: str) -> int:
        """
        Take the top card of the discard pile (acquire step).

        A card taken from the discard pile must be placed in the grid.

        Raises:
            TurnError: Not the current player, or a card is already held.
            PreconditionError: The discard pile is empty.
        """
        self._require_turn(player_id)
        if self.pending is not None:
            raise TurnError(WRONG_STEP, "You already have a card to play")
        if not self.discard_pile:
            raise PreconditionError(DISCARD_EMPTY, "Discard pile is empty")

        card = self.discard_pile.pop()
        self.pending = PendingCard(card, CardSource.DISCARD)
        return card

    def _reshuffle_discard_pile(self) -> Optional[int]:
        """
        Reshuffle the discard pile back into the deck.

        Keeps the top discard in place, shuffles the rest into the deck,
        and draws a card.

        Returns:
            A drawn card, or None if there was nothing to reshuffle.
        """
        if len(self.discard_pile) <= 1:
            return None

        top_card = self.discard_pile[-1]
        self.deck.add_cards(self.discard_pile[:-1])
        self.discard_pile = [top_card]
        return self.deck.draw()

    def place_card(self, player_id: str, position: int) -> int:
        """
        Place the held card into the grid (resolve step).

        The replaced card goes onto the discard pile, then completed columns
        are cleared and the turn ends.

        Args:
            player_id: ID of the player placing.
            position: Index 0-11 in the player's grid.

        Returns:
            The value of the replaced card.
        """
        player = self._require_turn(player_id)
        if self.pending is None:
            raise TurnError(WRONG_STEP, "Draw a card or take the discard first")
        if not player.grid.can_place(position):
            raise TurnError(INVALID_POSITION, f"Cannot place a card at position {position}")

        old_value = player.grid.place(position, self.pending.value)
        self.discard_pile.append(old_value)
        self.pending = None
        self._clear_columns(player)
        self._resolve_turn(player)
        return old_value

    def discard_and_reveal(self, player_id: str, position: int) -> int:
        """
        Discard the drawn card and reveal a face-down grid card instead.

        Only allowed when the held card came from the deck.

        Args:
            player_id: ID of the player acting.
            position: Index 0-11 of a face-down card.

        Returns:
            The value of the revealed card.
        """
        player = self._require_turn(player_id)
        if self.pending is None:
            raise TurnError(WRONG_STEP, "Draw a card first")
        if self.pending.source != CardSource.DRAW:
            raise TurnError(WRONG_STEP, "A card taken from the discard pile must be placed")
        if position not in player.grid.face_down_positions():
            raise TurnError(INVALID_POSITION, f"No face-down card at position {position}")

        self.discard_pile.append(self.pending.value)
        self.pending = None
        player.grid.reveal(position)
        revealed = player.grid.slots[position].value
        self._clear_columns(player)
        self._resolve_turn(player)
        return revealed

    # -------------------------------------------------------------------------
    # Turn & Round Flow (Internal)
    # -------------------------------------------------------------------------

    def _clear_columns(self, player: Player) -> list[int]:
        cleared = player.grid.check_column_clear()
        self.retired_cards += len(cleared) * len(COLUMNS[0])
        return cleared

    def _resolve_turn(self, player: Player) -> None:
        """End the round if the player's grid is complete, else pass the turn."""
        self.pending = None
        if player.grid.is_complete():
            self._end_round()
        else:
            self.current_player_index = (self.current_player_index + 1) % len(self.players)

    def _end_round(self) -> None:
        """
        Score the round.

        Reveals every grid, adds each round score to the running totals, and
        ends the game if any total reached the end score.
        """
        self.phase = GamePhase.ROUND_END
        self.pending = None

        for player in self.players:
            player.grid.reveal_all()
            player.score = player.grid.score()
            player.total_score += player.score

        if any(p.total_score >= self.end_score for p in self.players):
            self._end_game()
        else:
            self.round_number += 1

    def _end_game(self) -> None:
        """Finish the game; the lowest total wins, ties go to the earliest joiner."""
        self.phase = GamePhase.GAME_END
        self.pending = None
        if self.players:
            self.winner_id = min(self.players, key=lambda p: p.total_score).id

    # -------------------------------------------------------------------------
    # State Queries
    # -------------------------------------------------------------------------

    def discard_top(self) -> Optional[int]:
        """Get the top card of the discard pile (if any)."""
        if self.discard_pile:
            return self.discard_pile[-1]
        return None

    def accounted_cards(self) -> int:
        """
        Count every card of the current round.

        Always equals the deck size once a round has been dealt.
        """
        return (
            (self.deck.cards_remaining() if self.deck else 0)
            + len(self.discard_pile)
            + sum(p.grid.slot_count() for p in self.players)
            + (1 if self.pending is not None else 0)
            + self.retired_cards
        )

    def valid_moves(self, player_id: str) -> dict:
        """
        Moves available to a player right now, for client hints.

        Returns:
            Dict with can_draw, can_take_discard, can_place (positions)
            and can_reveal (positions).
        """
        player = self.get_player(player_id)
        current = self.current_player()
        if (
            self.phase != GamePhase.PLAYING
            or not player
            or not current
            or current.id != player_id
        ):
            return {"can_draw": False, "can_take_discard": False, "can_place": [], "can_reveal": []}

        holding = self.pending is not None
        return {
            "can_draw": not holding,
            "can_take_discard": not holding and bool(self.discard_pile),
            "can_place": [
                pos for pos in range(GRID_SIZE) if player.grid.can_place(pos)
            ] if holding else [],
            "can_reveal": (
                player.grid.face_down_positions()
                if holding and self.pending.source == CardSource.DRAW
                else []
            ),
        }

    def get_state(self, room_code: str = "", host_id: Optional[str] = None) -> dict:
        """
        Build the broadcast snapshot.

        The schema is fixed: every key is always present. Face-down card
        values are never included.

        Args:
            room_code: Code of the owning room.
            host_id: ID of the room host.

        Returns:
            JSON-serializable game state shared by every room member.
        """
        current = self.current_player() if self.phase == GamePhase.PLAYING else None

        players_data = []
        for player in self.players:
            players_data.append({
                "id": player.id,
                "name": player.name,
                "color": player.color,
                "is_host": player.id == host_id,
                "grid": player.grid.to_client_list(),
                "score": player.score,
                "total_score": player.total_score,
            })

        return {
            "room_code": room_code,
            "phase": self.phase.value,
            "round_number": self.round_number,
            "players": players_data,
            "current_player_id": current.id if current else None,
            "draw_pile_count": self.deck.cards_remaining() if self.deck else 0,
            "discard_top": self.discard_top(),
            "turn_action": self.pending.source.value if self.pending else None,
            "winner_id": self.winner_id,
        }
