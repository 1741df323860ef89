"""
Boundary layer data model(s).

These objects can be used to communicate with the Service.
Hence, both the API layer (higher) and domain/db layers (lower) will use model(s) defined here to send to/receive from the Service
(Decouples the data model specific to the DB layer, API layer, or domain layer from the information needed to send across boundaries)
"""

from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import Optional

# Type aliases to make the models easier to read
PlayerId = int
ChatId = int
MessageId = int


@dataclass
class PlayerModel:
    """A participant. Without a telegram_id the record is a placeholder created from an @mention."""

    id: PlayerId
    telegram_id: Optional[int]
    username: Optional[str]
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    wins: int = 0
    losses: int = 0
    draws: int = 0

    @property
    def is_placeholder(self) -> bool:
        return self.telegram_id is None

    @property
    def total_games(self) -> int:
        return self.wins + self.losses + self.draws

    def display_name(self) -> str:
        if self.username:
            return f"@{self.username}"
        if self.first_name:
            return self.first_name
        if self.telegram_id is not None:
            return f"user{self.telegram_id}"
        return "player"

    def mention_html(self) -> str:
        """Clickable mention when the user is known, plain @username for placeholders."""
        if self.telegram_id is not None:
            name = self.first_name or self.username or "player"
            return f'<a href="tg://user?id={self.telegram_id}">{escape(name)}</a>'
        if self.username:
            return f"@{escape(self.username)}"
        return "player"


@dataclass
class MoveModel:
    """One entry of the move log (numbered from 1)."""

    move_number: int
    uci: str
    played_by: PlayerId
    san: Optional[str] = None  # the text as typed by the player
    played_at: Optional[datetime] = None


@dataclass
class GameModel:
    """Transport-safe representation of a game session used between API, Service, DB, and Game layers."""

    chat_id: ChatId
    white_id: PlayerId
    black_id: PlayerId
    current_fen: str
    moves: list[MoveModel] = field(default_factory=list)
    status: str = "ongoing"
    result: Optional[str] = None
    draw_proposed_by: Optional[PlayerId] = None
    draw_message_id: Optional[MessageId] = None
    version: int = 0
    id: Optional[int] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


@dataclass
class HistoryEntry:
    """One line of a player's game history."""

    game_id: int
    started_at: datetime
    result: Optional[str]
    white: PlayerModel
    black: PlayerModel
