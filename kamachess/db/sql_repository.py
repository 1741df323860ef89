"""Implementation of (Game)Repository using SQLAlchemy"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import ColumnElement, and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from kamachess.core.exceptions import GameError, PersistenceError, StaleSessionError
from kamachess.core.models import (
    ChatId,
    GameModel,
    HistoryEntry,
    MessageId,
    MoveModel,
    PlayerId,
    PlayerModel,
)
from kamachess.core.shared_types import GameResult, Status
from kamachess.db.repository import PlayerIdentity
from kamachess.db.schema import DBGame, DBGameMessage, DBMove, DBUser, utc_now

logger = logging.getLogger(__name__)


class SQLGameRepository:
    """Data stored using SQL / methods implemented using SQLAlchemy"""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    # --- PLAYERS ---
    def upsert_player(self, user: PlayerIdentity) -> PlayerModel:
        """
        Create or refresh a fully identified player
        ----

        If a placeholder with the same username exists (the user was @mentioned before ever writing),
        it is merged into the surviving record: games, moves and counters move along with it.
        Running it again for the same user is a no-op apart from refreshing the names.
        """
        with self._transaction("store player"):
            player = self.db.scalar(select(DBUser).where(DBUser.telegram_id == user.id))
            placeholder = (
                self.db.scalar(
                    select(DBUser).where(
                        _username_matches(user.username), DBUser.telegram_id.is_(None)
                    )
                )
                if user.username
                else None
            )

            if player is None and placeholder is not None:
                player = placeholder
                player.telegram_id = user.id
                logger.info("Placeholder @%s claimed by user %s", user.username, user.id)
            elif player is None:
                player = DBUser(telegram_id=user.id, wins=0, losses=0, draws=0)
                self.db.add(player)
            elif placeholder is not None:
                self._merge_players(placeholder, into=player)

            self.db.flush()
            if user.username:
                self._release_username(user.username, keep=player)

            player.username = user.username
            player.first_name = user.first_name
            player.last_name = user.last_name
            self.db.flush()
            return self._to_player(player)

    def upsert_player_by_username(self, username: str) -> PlayerModel:
        username = username.lstrip("@")
        with self._transaction("store player"):
            player = self.db.scalar(select(DBUser).where(_username_matches(username)))
            if player is None:
                player = DBUser(username=username, wins=0, losses=0, draws=0)
                self.db.add(player)
                self.db.flush()
            return self._to_player(player)

    def get_player(self, player_id: PlayerId) -> PlayerModel | None:
        with self._reading("load player"):
            player = self.db.get(DBUser, player_id)
            return self._to_player(player) if player else None

    # --- GAMES ---
    def create_game(self, game: GameModel) -> GameModel:
        """Store new game and return the stored data (with the newly created game ID)."""
        with self._transaction("create game"):
            game_db = DBGame(
                chat_id=game.chat_id,
                white_user_id=game.white_id,
                black_user_id=game.black_id,
                current_fen=game.current_fen,
                status=game.status,
                result=game.result,
                draw_proposed_by=game.draw_proposed_by,
                draw_message_id=game.draw_message_id,
                version=game.version,
                started_at=game.started_at or utc_now(),
                ended_at=game.ended_at,
            )
            self.db.add(game_db)
            self.db.flush()
            self._append_moves(game_db.id, game.moves)
            self.db.flush()
            return self._to_model(game_db)

    def get_game(self, game_id: int) -> GameModel | None:
        """Get game by ID, if record exists."""
        with self._reading("load game"):
            game_db = self.db.get(DBGame, game_id)
            return self._to_model(game_db) if game_db else None

    def find_ongoing_game(
        self, chat_id: ChatId, player_a: PlayerId, player_b: PlayerId
    ) -> GameModel | None:
        query = (
            select(DBGame)
            .where(
                DBGame.chat_id == chat_id,
                DBGame.status == Status.ONGOING,
                _pair_matches(player_a, player_b),
            )
            .order_by(DBGame.id.desc())
            .limit(1)
        )
        with self._reading("find ongoing game"):
            game_db = self.db.scalar(query)
            return self._to_model(game_db) if game_db else None

    def find_game_by_message(
        self, chat_id: ChatId, message_id: MessageId
    ) -> GameModel | None:
        query = (
            select(DBGame)
            .join(DBGameMessage, DBGameMessage.game_id == DBGame.id)
            .where(
                DBGameMessage.chat_id == chat_id,
                DBGameMessage.message_id == message_id,
            )
            .order_by(DBGameMessage.id.desc())
            .limit(1)
        )
        with self._reading("find game by message"):
            game_db = self.db.scalar(query)
            return self._to_model(game_db) if game_db else None

    def update_game(self, game: GameModel, expected_version: int) -> GameModel:
        """
        Compare-and-swap write
        ----

        1. update the row only if it is still ongoing and still at expected_version (else StaleSessionError)
        2. append the moves that are not stored yet
        3. if this write finishes the game, update both players' counters

        All in one transaction. A finished game can never pass step 1 again, so step 3 runs once per game.
        """
        if game.id is None:
            raise ValueError("Cannot update a game that was never stored.")

        with self._transaction("update game"):
            outcome = self.db.execute(
                update(DBGame)
                .where(
                    DBGame.id == game.id,
                    DBGame.version == expected_version,
                    DBGame.status == Status.ONGOING,
                )
                .values(
                    current_fen=game.current_fen,
                    status=game.status,
                    result=game.result,
                    draw_proposed_by=game.draw_proposed_by,
                    draw_message_id=game.draw_message_id,
                    ended_at=game.ended_at,
                    version=expected_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                raise StaleSessionError(
                    "The game changed in the meantime. Please look at the latest board and try again."
                )

            stored_moves = self.db.scalar(
                select(func.count()).select_from(DBMove).where(DBMove.game_id == game.id)
            )
            self._append_moves(game.id, game.moves[stored_moves:])

            if game.status == Status.FINISHED and game.result:
                self._record_result(game.white_id, game.black_id, GameResult(game.result))
            self.db.flush()

            game_db = self.db.get(DBGame, game.id, populate_existing=True)
            assert game_db is not None
            return self._to_model(game_db)

    # --- MESSAGE LINKAGE ---
    def record_message(self, game_id: int, chat_id: ChatId, message_id: MessageId) -> None:
        with self._transaction("link message"):
            self.db.add(DBGameMessage(game_id=game_id, chat_id=chat_id, message_id=message_id))

    def list_messages(self, game_id: int) -> list[MessageId]:
        query = (
            select(DBGameMessage.message_id)
            .where(DBGameMessage.game_id == game_id)
            .order_by(DBGameMessage.id)
        )
        with self._reading("list game messages"):
            return list(self.db.scalars(query))

    def delete_messages(self, game_id: int, message_ids: list[MessageId]) -> None:
        if not message_ids:
            return
        with self._transaction("unlink messages"):
            self.db.execute(
                delete(DBGameMessage).where(
                    DBGameMessage.game_id == game_id,
                    DBGameMessage.message_id.in_(message_ids),
                )
            )

    # --- HISTORY ---
    def player_games(self, player_id: PlayerId, limit: int, offset: int) -> list[HistoryEntry]:
        condition = or_(DBGame.white_user_id == player_id, DBGame.black_user_id == player_id)
        with self._reading("load history"):
            return self._history(condition, limit, offset)

    def head_to_head(
        self, player_a: PlayerId, player_b: PlayerId, limit: int, offset: int
    ) -> list[HistoryEntry]:
        with self._reading("load head-to-head history"):
            return self._history(_pair_matches(player_a, player_b), limit, offset)

    def count_head_to_head(self, player_a: PlayerId, player_b: PlayerId) -> int:
        query = select(func.count()).select_from(DBGame).where(_pair_matches(player_a, player_b))
        with self._reading("count head-to-head games"):
            return self.db.scalar(query) or 0

    # -- Internal helpers --
    @contextmanager
    def _transaction(self, action: str) -> Iterator[None]:
        """Commit on success, roll back on any error. Storage errors become PersistenceError."""
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Database error while trying to %s", action)
            raise PersistenceError(f"Could not {action}.") from exc
        except (GameError, ValueError):
            self.db.rollback()
            raise

    @contextmanager
    def _reading(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Database error while trying to %s", action)
            raise PersistenceError(f"Could not {action}.") from exc

    def _merge_players(self, placeholder: DBUser, into: DBUser) -> None:
        """
        Move every reference from the placeholder to the surviving player, then drop the placeholder.

        An ongoing game of the placeholder is dropped when, after the merge, it would be a game against
        oneself or a second ongoing game for the same pair in the same chat.
        """
        logger.info("Merging placeholder %s into player %s", placeholder.id, into.id)
        self._drop_conflicting_games(placeholder, into)
        for column in (DBGame.white_user_id, DBGame.black_user_id, DBGame.draw_proposed_by):
            self.db.execute(
                update(DBGame).where(column == placeholder.id).values({column.key: into.id})
                .execution_options(synchronize_session=False)
            )
        self.db.execute(
            update(DBMove).where(DBMove.played_by == placeholder.id).values(played_by=into.id)
            .execution_options(synchronize_session=False)
        )
        into.wins += placeholder.wins
        into.losses += placeholder.losses
        into.draws += placeholder.draws
        self.db.delete(placeholder)
        self.db.flush()

    def _drop_conflicting_games(self, placeholder: DBUser, into: DBUser) -> None:
        ongoing = self.db.scalars(
            select(DBGame).where(
                DBGame.status == Status.ONGOING,
                or_(DBGame.white_user_id == placeholder.id, DBGame.black_user_id == placeholder.id),
            )
        ).all()
        for game in ongoing:
            other = game.black_user_id if game.white_user_id == placeholder.id else game.white_user_id
            existing = self.db.scalar(
                select(DBGame.id).where(
                    DBGame.chat_id == game.chat_id,
                    DBGame.status == Status.ONGOING,
                    _pair_matches(into.id, other),
                ).limit(1)
            )
            if other != into.id and existing is None:
                continue
            logger.warning(
                "Dropping game %s of placeholder %s: it clashes with player %s's games in chat %s",
                game.id, placeholder.id, into.id, game.chat_id,
            )
            self.db.execute(delete(DBMove).where(DBMove.game_id == game.id))
            self.db.execute(delete(DBGameMessage).where(DBGameMessage.game_id == game.id))
            self.db.delete(game)
        self.db.flush()

    def _release_username(self, username: str, keep: DBUser) -> None:
        """Usernames are unique: whoever held this one before (a renamed account) loses it."""
        previous_holders = self.db.scalars(
            select(DBUser).where(_username_matches(username), DBUser.id != keep.id)
        )
        for holder in previous_holders:
            holder.username = None
        self.db.flush()

    def _record_result(self, white_id: PlayerId, black_id: PlayerId, result: GameResult) -> None:
        if result == GameResult.DRAW:
            self._increment(white_id, DBUser.draws)
            self._increment(black_id, DBUser.draws)
            return
        winner, loser = (white_id, black_id) if result == GameResult.WHITE_WIN else (black_id, white_id)
        self._increment(winner, DBUser.wins)
        self._increment(loser, DBUser.losses)

    def _increment(self, player_id: PlayerId, counter) -> None:
        self.db.execute(
            update(DBUser).where(DBUser.id == player_id).values({counter.key: counter + 1})
            .execution_options(synchronize_session=False)
        )

    def _append_moves(self, game_id: int, moves: list[MoveModel]) -> None:
        for move in moves:
            self.db.add(
                DBMove(
                    game_id=game_id,
                    move_number=move.move_number,
                    uci=move.uci,
                    san=move.san,
                    played_by=move.played_by,
                    played_at=move.played_at or utc_now(),
                )
            )

    def _history(self, condition: ColumnElement[bool], limit: int, offset: int) -> list[HistoryEntry]:
        white = aliased(DBUser)
        black = aliased(DBUser)
        query = (
            select(DBGame, white, black)
            .join(white, DBGame.white_user_id == white.id)
            .join(black, DBGame.black_user_id == black.id)
            .where(condition)
            .order_by(DBGame.started_at.desc(), DBGame.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [
            HistoryEntry(
                game_id=game_db.id,
                started_at=game_db.started_at,
                result=game_db.result,
                white=self._to_player(white_db),
                black=self._to_player(black_db),
            )
            for game_db, white_db, black_db in self.db.execute(query)
        ]

    def _to_player(self, player_db: DBUser) -> PlayerModel:
        return PlayerModel(
            id=player_db.id,
            telegram_id=player_db.telegram_id,
            username=player_db.username,
            first_name=player_db.first_name,
            last_name=player_db.last_name,
            wins=player_db.wins,
            losses=player_db.losses,
            draws=player_db.draws,
        )

    def _to_model(self, game_db: DBGame) -> GameModel:
        """Convert SQLAlchemy model to data transfer model."""
        moves = self.db.scalars(
            select(DBMove).where(DBMove.game_id == game_db.id).order_by(DBMove.move_number)
        )
        return GameModel(
            chat_id=game_db.chat_id,
            white_id=game_db.white_user_id,
            black_id=game_db.black_user_id,
            current_fen=game_db.current_fen,
            moves=[
                MoveModel(
                    move_number=move.move_number,
                    uci=move.uci,
                    played_by=move.played_by,
                    san=move.san,
                    played_at=move.played_at,
                )
                for move in moves
            ],
            status=game_db.status,
            result=game_db.result,
            draw_proposed_by=game_db.draw_proposed_by,
            draw_message_id=game_db.draw_message_id,
            version=game_db.version,
            id=game_db.id,
            started_at=game_db.started_at,
            ended_at=game_db.ended_at,
        )


def _username_matches(username: str | None) -> ColumnElement[bool]:
    return func.lower(DBUser.username) == (username or "").lower()


def _pair_matches(player_a: PlayerId, player_b: PlayerId) -> ColumnElement[bool]:
    return or_(
        and_(DBGame.white_user_id == player_a, DBGame.black_user_id == player_b),
        and_(DBGame.white_user_id == player_b, DBGame.black_user_id == player_a),
    )
