"""Core rules for OnlineXO: move validation plus win and draw detection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

Player = str  # "X" or "O"
Cell = Optional[Player]  # None for an empty cell

DRAW = "Draw"
BOARD_SIZE = 9

# Rows, then columns, then diagonals. The order decides which line is
# reported when a corrupted board completes two lines at once.
WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


def empty_board() -> List[Cell]:
    return [None] * BOARD_SIZE


def other(player: Player) -> Player:
    return "O" if player == "X" else "X"


def check_winner(board: Sequence[Cell]) -> Optional[Tuple[Player, Tuple[int, int, int]]]:
    """Return ``(symbol, line)`` for the first complete line, or ``None``."""
    for a, b, c in WINNING_LINES:
        v = board[a]
        if v and v == board[b] == board[c]:
            return v, (a, b, c)
    return None


def is_full(board: Sequence[Cell]) -> bool:
    return all(c is not None for c in board)


@dataclass(frozen=True)
class MoveResult:
    board: List[Cell]
    winner: Optional[str] = None
    winning_cells: List[int] = field(default_factory=list)
    is_draw: bool = False
    accepted: bool = False
    mover: Optional[Player] = None

    @property
    def next_turn(self) -> Optional[Player]:
        """Symbol to move next; ``None`` once the game is over."""
        if self.winner or self.is_draw or self.mover is None:
            return None
        return other(self.mover)

    def to_update(self) -> Dict[str, object]:
        """Partial store update describing the position after this move."""
        return {
            "board": list(self.board),
            "turn": self.next_turn,
            "winner": self.winner,
            "winningCells": list(self.winning_cells),
        }


def apply_move(
    board: Sequence[Cell],
    cell_index: int,
    symbol: Player,
    *,
    turn: Optional[Player],
    winner: Optional[str] = None,
) -> MoveResult:
    """Place ``symbol`` on ``cell_index`` if the move is legal.

    Illegal moves are not errors: the result comes back with
    ``accepted=False``, the board unchanged and the previous winner kept.
    The input board is never mutated.
    """
    current = list(board)
    if (
        not 0 <= cell_index < BOARD_SIZE
        or current[cell_index] is not None
        or winner
        or symbol != turn
    ):
        return MoveResult(board=current, winner=winner)

    current[cell_index] = symbol
    result = check_winner(current)
    if result:
        line_symbol, line = result
        return MoveResult(
            board=current,
            winner=line_symbol,
            winning_cells=list(line),
            accepted=True,
            mover=symbol,
        )
    if is_full(current):
        return MoveResult(
            board=current, winner=DRAW, is_draw=True, accepted=True, mover=symbol
        )
    return MoveResult(board=current, accepted=True, mover=symbol)
