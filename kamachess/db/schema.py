"""Database tables / schema"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBUser(Base):
    """A player. telegram_id is NULL for placeholders created from an @mention."""

    __tablename__ = "users"
    id: Mapped[int] = mapped_column(primary_key=True)
    telegram_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    first_name: Mapped[Optional[str]]
    last_name: Mapped[Optional[str]]
    wins: Mapped[int] = mapped_column(default=0)
    losses: Mapped[int] = mapped_column(default=0)
    draws: Mapped[int] = mapped_column(default=0)


class DBGame(Base):
    __tablename__ = "games"
    id: Mapped[int] = mapped_column(primary_key=True)
    chat_id: Mapped[int] = mapped_column(BigInteger)
    white_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    black_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    current_fen: Mapped[str]
    status: Mapped[str] = mapped_column(default="ongoing")
    result: Mapped[Optional[str]]
    draw_proposed_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    draw_message_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    # compared on every write, see SQLGameRepository.update_game
    version: Mapped[int] = mapped_column(default=0)
    started_at: Mapped[datetime] = mapped_column(default=utc_now)
    ended_at: Mapped[Optional[datetime]]

    __table_args__ = (
        Index("idx_games_chat_status", "chat_id", "status"),
        Index("idx_games_chat_players", "chat_id", "white_user_id", "black_user_id"),
    )


class DBMove(Base):
    __tablename__ = "moves"
    id: Mapped[int] = mapped_column(primary_key=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), index=True)
    move_number: Mapped[int]
    uci: Mapped[str]
    san: Mapped[Optional[str]]
    played_by: Mapped[int] = mapped_column(ForeignKey("users.id"))
    played_at: Mapped[datetime] = mapped_column(default=utc_now)

    __table_args__ = (Index("idx_moves_game_number", "game_id", "move_number"),)


class DBGameMessage(Base):
    """Messages the bot posted for a game. A reply to one of them targets that game."""

    __tablename__ = "game_messages"
    id: Mapped[int] = mapped_column(primary_key=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id", ondelete="CASCADE"), index=True)
    chat_id: Mapped[int] = mapped_column(BigInteger)
    message_id: Mapped[int] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    __table_args__ = (Index("idx_game_messages_chat_message", "chat_id", "message_id"),)
