"""Inbound update models, service requests and responses"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kamachess.core.exceptions import InvalidRequestError
from kamachess.core.models import HistoryEntry, PlayerModel
from kamachess.core.shared_types import Color, GameResult, Outcome, Status


# --- INBOUND UPDATES (messaging platform payloads) ---
class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class Chat(BaseModel):
    id: int


class ReplyMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    chat: Chat
    text: Optional[str] = None
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    reply_to_message: Optional[ReplyMessage] = None


class Update(BaseModel):
    update_id: int
    message: Optional[Message] = None


# --- OPPONENT REFERENCE ---
class DirectOpponent(BaseModel):
    """Opponent known by identity (the author of the replied-to message)."""

    kind: Literal["direct"] = "direct"
    user: TelegramUser


class NamedOpponent(BaseModel):
    """Opponent known only by an @mention."""

    kind: Literal["named"] = "named"
    username: str

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        username = value.strip().lstrip("@")
        if not username:
            raise InvalidRequestError("Opponent username cannot be empty.")
        return username


OpponentRef = Annotated[Union[DirectOpponent, NamedOpponent], Field(discriminator="kind")]


# --- REQUEST MODELS ---
class StartGameRequest(BaseModel):
    chat_id: int
    initiator: TelegramUser
    opponent: OpponentRef
    first_move: Optional[str] = None


class MoveRequest(BaseModel):
    chat_id: int
    game_id: int
    player: TelegramUser
    text: str

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        if not value.strip():
            raise InvalidRequestError("Please send a move like e4 or e2e4.")
        return value


class ResignRequest(BaseModel):
    chat_id: int
    game_id: int
    player: TelegramUser


class DrawRequest(BaseModel):
    chat_id: int
    game_id: int
    player: TelegramUser
    # message that carries the proposal, so a reply to it can accept
    message_id: Optional[int] = None


class AcceptDrawRequest(BaseModel):
    chat_id: int
    game_id: int
    player: TelegramUser


class HistoryRequest(BaseModel):
    player: TelegramUser
    usernames: list[str] = Field(default_factory=list)
    page: int = 1

    @field_validator("page")
    @classmethod
    def validate_page(cls, value: int) -> int:
        return max(value, 1)


# --- RESPONSE MODELS ---
class GameResponse(BaseModel):
    game_id: int
    chat_id: int
    white: PlayerModel
    black: PlayerModel
    fen_state: str
    side_to_move: Color
    last_move_uci: Optional[str] = None
    move_count: int
    status: Status
    result: Optional[GameResult] = None
    outcome: Optional[Outcome] = None
    draw_proposed_by: Optional[int] = None
    version: int

    @property
    def is_finished(self) -> bool:
        return self.status == Status.FINISHED

    @property
    def winner_color(self) -> Optional[Color]:
        if self.result == GameResult.WHITE_WIN:
            return Color.WHITE
        if self.result == GameResult.BLACK_WIN:
            return Color.BLACK
        return None

    def player(self, color: Color) -> PlayerModel:
        return self.white if color == Color.WHITE else self.black


class PlayerHistoryResponse(BaseModel):
    player: PlayerModel
    page: int
    games: list[HistoryEntry]

    @property
    def win_percentage(self) -> float:
        if self.player.total_games == 0:
            return 0.0
        return self.player.wins * 100.0 / self.player.total_games


class HeadToHeadResponse(BaseModel):
    player_a: PlayerModel
    player_b: PlayerModel
    total_games: int
    page: int
    games: list[HistoryEntry]
