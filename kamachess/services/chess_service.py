"""Orchestration of communication from the update router to business logic and persistence layers (and the reverse direction)."""

import logging
from typing import Optional

from kamachess.api.models import (
    AcceptDrawRequest,
    DirectOpponent,
    DrawRequest,
    GameResponse,
    MoveRequest,
    NamedOpponent,
    OpponentRef,
    ResignRequest,
    StartGameRequest,
)
from kamachess.chess.game import GameSession
from kamachess.chess.notation import MoveResolver
from kamachess.core.exceptions import (
    DuplicateSessionError,
    GameNotFoundError,
    PersistenceError,
    SelfPlayError,
)
from kamachess.core.models import GameModel, MessageId, PlayerModel
from kamachess.core.shared_types import Outcome
from kamachess.db.repository import GameRepository

logger = logging.getLogger(__name__)


class ChessService:
    """Orchestration of layers for a chess game played over chat messages."""

    def __init__(self, repository: GameRepository, resolver: Optional[MoveResolver] = None) -> None:
        self.repo = repository
        self.resolver = resolver or MoveResolver()

    # -- Session operations ---
    def start_game(self, request: StartGameRequest) -> GameResponse:
        """
        Initiator challenges an opponent (optionally with a first move).
        ----

        The initiator plays white. A first move, if given, is applied before anything is stored.
        """
        initiator = self.repo.upsert_player(request.initiator)
        opponent = self._resolve_opponent(request.opponent)

        if initiator.id == opponent.id:
            raise SelfPlayError("You cannot start a game against yourself.")
        if self.repo.find_ongoing_game(request.chat_id, initiator.id, opponent.id) is not None:
            raise DuplicateSessionError(
                "There is already an ongoing game between these players in this chat."
            )

        game = GameSession.new_game(request.chat_id, white=initiator.id, black=opponent.id)
        if request.first_move:
            game.make_move(initiator.id, request.first_move, self.resolver)

        stored = self.repo.create_game(game.to_model())
        logger.info(
            "Game %s started in chat %s: %s vs %s",
            stored.id,
            request.chat_id,
            initiator.display_name(),
            opponent.display_name(),
        )
        return self._create_game_response(stored)

    def make_move(self, request: MoveRequest) -> GameResponse:
        game = self._fetch_session(request.game_id)
        player = self.repo.upsert_player(request.player)
        expected_version = game.version

        game.make_move(player.id, request.text, self.resolver)
        return self._save(game, expected_version)

    def resign(self, request: ResignRequest) -> GameResponse:
        game = self._fetch_session(request.game_id)
        player = self.repo.upsert_player(request.player)
        expected_version = game.version

        game.resign(player.id)
        return self._save(game, expected_version)

    def propose_draw(self, request: DrawRequest) -> GameResponse:
        game = self._fetch_session(request.game_id)
        player = self.repo.upsert_player(request.player)
        expected_version = game.version

        game.propose_draw(player.id, request.message_id)
        return self._save(game, expected_version)

    def accept_draw(self, request: AcceptDrawRequest) -> GameResponse:
        game = self._fetch_session(request.game_id)
        player = self.repo.upsert_player(request.player)
        expected_version = game.version

        game.accept_draw(player.id)
        return self._save(game, expected_version)

    # -- Lookups and message linkage ---
    def get_game(self, game_id: int) -> GameResponse:
        return self._create_game_response(self._fetch_game(game_id))

    def game_by_message(self, chat_id: int, message_id: MessageId) -> GameResponse:
        """The game a reply targets. Raises GameNotFoundError for messages that are not ours."""
        model = self.repo.find_game_by_message(chat_id, message_id)
        if model is None:
            raise GameNotFoundError("That message does not belong to a game.")
        return self._create_game_response(model)

    def link_message(self, game_id: int, chat_id: int, message_id: MessageId) -> None:
        self.repo.record_message(game_id, chat_id, message_id)

    def prune_messages(self, game_id: int, keep: MessageId) -> list[MessageId]:
        """Unlink every message of the game except keep. Returns the ids that were unlinked."""
        stale = [message_id for message_id in self.repo.list_messages(game_id) if message_id != keep]
        self.repo.delete_messages(game_id, stale)
        return stale

    # -- Internal helpers --
    def _resolve_opponent(self, opponent: OpponentRef) -> PlayerModel:
        match opponent:
            case DirectOpponent(user=user):
                return self.repo.upsert_player(user)
            case NamedOpponent(username=username):
                return self.repo.upsert_player_by_username(username)
        raise TypeError(f"Unknown opponent reference: {opponent!r}")

    def _save(self, game: GameSession, expected_version: int) -> GameResponse:
        stored = self.repo.update_game(game.to_model(), expected_version)
        if game.is_finished:
            logger.info("Game %s finished: %s (%s)", game.id, game.result, game.outcome)
        return self._create_game_response(stored, outcome=game.outcome)

    def _fetch_game(self, game_id: int) -> GameModel:
        """Attempt to find the game in the repository and raise error if it fails."""
        game_model = self.repo.get_game(game_id)
        if game_model is None:
            raise GameNotFoundError(f"Game {game_id} not found.")
        return game_model

    def _fetch_session(self, game_id: int) -> GameSession:
        return GameSession.from_model(self._fetch_game(game_id))

    def _fetch_player(self, player_id: int) -> PlayerModel:
        player = self.repo.get_player(player_id)
        if player is None:
            raise PersistenceError(f"Player {player_id} referenced by a game does not exist.")
        return player

    def _create_game_response(
        self, model: GameModel, outcome: Optional[Outcome] = None
    ) -> GameResponse:
        """Convert info in GameModel to a GameResponse."""
        assert model.id is not None
        game = GameSession.from_model(model)
        return GameResponse(
            game_id=model.id,
            chat_id=model.chat_id,
            white=self._fetch_player(model.white_id),
            black=self._fetch_player(model.black_id),
            fen_state=model.current_fen,
            side_to_move=game.side_to_move,
            last_move_uci=game.last_move.uci if game.last_move else None,
            move_count=len(model.moves),
            status=game.status,
            result=game.result,
            outcome=outcome,
            draw_proposed_by=model.draw_proposed_by,
            version=model.version,
        )
