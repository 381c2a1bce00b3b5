"""Schema of the shared session record and the participant roles."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .game import BOARD_SIZE, Player, empty_board


class MalformedRecordError(ValueError):
    """Raised when a stored document does not match the session schema."""


class Role(str, Enum):
    X = "X"
    O = "O"
    SPECTATOR = "Spectator"

    @property
    def symbol(self) -> Optional[Player]:
        return None if self is Role.SPECTATOR else self.value

    @property
    def is_player(self) -> bool:
        return self is not Role.SPECTATOR


class SessionRecord(BaseModel):
    """One game instance as persisted in the session store."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    board: List[Optional[Literal["X", "O"]]] = Field(default_factory=empty_board)
    turn: Optional[Literal["X", "O"]] = "X"
    winner: Optional[Literal["X", "O", "Draw"]] = None
    winning_cells: List[int] = Field(default_factory=list, alias="winningCells")
    player_x: Optional[str] = None
    player_o: Optional[str] = None
    player_x_name: Optional[str] = None
    player_o_name: Optional[str] = None

    @model_validator(mode="after")
    def check_shape(self) -> "SessionRecord":
        if len(self.board) != BOARD_SIZE:
            raise ValueError(f"Board must have {BOARD_SIZE} positions")
        if self.winning_cells:
            if len(self.winning_cells) != 3:
                raise ValueError("winningCells must hold exactly 3 indices")
            if any(not 0 <= i < BOARD_SIZE for i in self.winning_cells):
                raise ValueError("winningCells index out of range")
            if self.winner not in ("X", "O"):
                raise ValueError("winningCells set without a winning symbol")
        elif self.winner in ("X", "O"):
            raise ValueError("winner set without winningCells")

        full = all(c is not None for c in self.board)
        if full and self.winner is None:
            raise ValueError("Full board must carry a winner or a draw")
        if (self.turn is not None) != (self.winner is None and not full):
            raise ValueError("turn must be set exactly while the game is open")
        return self

    @classmethod
    def from_store(cls, data: object) -> "SessionRecord":
        if not isinstance(data, dict):
            raise MalformedRecordError(f"Expected a mapping, got {type(data).__name__}")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise MalformedRecordError(str(exc)) from exc

    def to_store(self) -> Dict[str, object]:
        return self.model_dump(by_alias=True)

    @property
    def is_terminal(self) -> bool:
        return self.winner is not None

    def slot_of(self, player_id: str) -> Optional[Role]:
        if player_id == self.player_x:
            return Role.X
        if player_id == self.player_o:
            return Role.O
        return None

    def name_for(self, symbol: Player) -> str:
        name = self.player_x_name if symbol == "X" else self.player_o_name
        return name or f"Player {symbol}"


def new_session_fields(player_id: str, player_name: Optional[str] = None) -> Dict[str, object]:
    """Initial document for a session started by ``player_id``."""
    fields: Dict[str, object] = {
        "board": empty_board(),
        "turn": "X",
        "winner": None,
        "winningCells": [],
        "player_x": player_id,
        "player_o": None,
        "player_x_name": player_name or None,
        "player_o_name": None,
    }
    return fields


def reset_fields() -> Dict[str, object]:
    """Partial update that clears the board and keeps both players."""
    return {"board": empty_board(), "turn": "X", "winner": None, "winningCells": []}

