"""Unit tests for kamachess/services/chess_service.py and history_service.py"""

from copy import deepcopy
from datetime import datetime, timedelta, timezone
from typing import Generator

import chess
import pytest

from kamachess.api.models import (
    AcceptDrawRequest,
    DirectOpponent,
    DrawRequest,
    HeadToHeadResponse,
    HistoryRequest,
    MoveRequest,
    NamedOpponent,
    PlayerHistoryResponse,
    ResignRequest,
    StartGameRequest,
    TelegramUser,
)
from kamachess.core.exceptions import (
    DuplicateSessionError,
    GameNotFoundError,
    IllegalCandidateError,
    NoPendingProposalError,
    ParticipantViolationError,
    SelfPlayError,
    StaleSessionError,
    TurnViolationError,
)
from kamachess.core.models import GameModel, HistoryEntry, MessageId, PlayerModel
from kamachess.core.shared_types import Color, GameResult, Outcome, Status
from kamachess.db.repository import PlayerIdentity
from kamachess.services.chess_service import ChessService
from kamachess.services.history_service import HistoryService

CHAT = -42


# --- MOCK DEPENDENCIES ----
class MockRepository:
    """Mock the GameRepository with dictionaries. Stored models are copied in and out."""

    def __init__(self) -> None:
        self._players: dict[int, PlayerModel] = {}
        self._games: dict[int, GameModel] = {}
        self._messages: list[tuple[int, int, MessageId]] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # --- players ---
    def upsert_player(self, user: PlayerIdentity) -> PlayerModel:
        player = next((p for p in self._players.values() if p.telegram_id == user.id), None)
        if player is None and user.username:
            player = next(
                (
                    p
                    for p in self._players.values()
                    if p.is_placeholder and (p.username or "").lower() == user.username.lower()
                ),
                None,
            )
        if player is None:
            player = PlayerModel(id=len(self._players) + 1, telegram_id=user.id, username=None)
            self._players[player.id] = player
        player.telegram_id = user.id
        player.username = user.username
        player.first_name = user.first_name
        player.last_name = user.last_name
        return deepcopy(player)

    def upsert_player_by_username(self, username: str) -> PlayerModel:
        username = username.lstrip("@")
        player = next(
            (p for p in self._players.values() if (p.username or "").lower() == username.lower()),
            None,
        )
        if player is None:
            player = PlayerModel(id=len(self._players) + 1, telegram_id=None, username=username)
            self._players[player.id] = player
        return deepcopy(player)

    def get_player(self, player_id: int) -> PlayerModel | None:
        return deepcopy(self._players.get(player_id))

    # --- games ---
    def create_game(self, game: GameModel) -> GameModel:
        stored = deepcopy(game)
        stored.id = len(self._games) + 1
        self._clock += timedelta(minutes=1)
        stored.started_at = stored.started_at or self._clock
        self._games[stored.id] = stored
        return deepcopy(stored)

    def get_game(self, game_id: int) -> GameModel | None:
        return deepcopy(self._games.get(game_id))

    def find_ongoing_game(self, chat_id: int, player_a: int, player_b: int) -> GameModel | None:
        for game in self._games.values():
            if (
                game.chat_id == chat_id
                and game.status == Status.ONGOING
                and {game.white_id, game.black_id} == {player_a, player_b}
            ):
                return deepcopy(game)
        return None

    def find_game_by_message(self, chat_id: int, message_id: MessageId) -> GameModel | None:
        for game_id, chat, message in reversed(self._messages):
            if chat == chat_id and message == message_id:
                return self.get_game(game_id)
        return None

    def update_game(self, game: GameModel, expected_version: int) -> GameModel:
        stored = self._games[game.id]
        if stored.version != expected_version or stored.status != Status.ONGOING:
            raise StaleSessionError("The game changed in the meantime.")
        updated = deepcopy(game)
        updated.version = expected_version + 1
        self._games[game.id] = updated
        if updated.status == Status.FINISHED:
            self._record_result(updated)
        return deepcopy(updated)

    def _record_result(self, game: GameModel) -> None:
        white, black = self._players[game.white_id], self._players[game.black_id]
        if game.result == GameResult.DRAW:
            white.draws += 1
            black.draws += 1
        elif game.result == GameResult.WHITE_WIN:
            white.wins += 1
            black.losses += 1
        else:
            black.wins += 1
            white.losses += 1

    # --- message linkage ---
    def record_message(self, game_id: int, chat_id: int, message_id: MessageId) -> None:
        self._messages.append((game_id, chat_id, message_id))

    def list_messages(self, game_id: int) -> list[MessageId]:
        return [message for stored_id, _, message in self._messages if stored_id == game_id]

    def delete_messages(self, game_id: int, message_ids: list[MessageId]) -> None:
        self._messages = [
            entry for entry in self._messages if not (entry[0] == game_id and entry[2] in message_ids)
        ]

    # --- history ---
    def player_games(self, player_id: int, limit: int, offset: int) -> list[HistoryEntry]:
        games = [g for g in self._games.values() if player_id in (g.white_id, g.black_id)]
        return self._entries(games, limit, offset)

    def head_to_head(self, player_a: int, player_b: int, limit: int, offset: int) -> list[HistoryEntry]:
        games = [g for g in self._games.values() if {g.white_id, g.black_id} == {player_a, player_b}]
        return self._entries(games, limit, offset)

    def count_head_to_head(self, player_a: int, player_b: int) -> int:
        return len(self.head_to_head(player_a, player_b, limit=10_000, offset=0))

    def _entries(self, games: list[GameModel], limit: int, offset: int) -> list[HistoryEntry]:
        ordered = sorted(games, key=lambda g: (g.started_at, g.id), reverse=True)
        return [
            HistoryEntry(
                game_id=g.id,
                started_at=g.started_at,
                result=g.result,
                white=deepcopy(self._players[g.white_id]),
                black=deepcopy(self._players[g.black_id]),
            )
            for g in ordered[offset : offset + limit]
        ]

    def clear(self) -> None:
        """Clear the repository (useful in between tests)"""
        self._players.clear()
        self._games.clear()
        self._messages.clear()


@pytest.fixture
def mock_repository() -> Generator[MockRepository, None, None]:
    """Ensures to clear the repository between tests"""
    repo = MockRepository()
    try:
        yield repo
    finally:
        repo.clear()


@pytest.fixture
def service(mock_repository: MockRepository) -> ChessService:
    return ChessService(mock_repository)


def start(service: ChessService, initiator: TelegramUser, opponent: TelegramUser, first_move: str | None = None):
    return service.start_game(
        StartGameRequest(
            chat_id=CHAT,
            initiator=initiator,
            opponent=DirectOpponent(user=opponent),
            first_move=first_move,
        )
    )


def move(service: ChessService, game_id: int, player: TelegramUser, text: str):
    return service.make_move(MoveRequest(chat_id=CHAT, game_id=game_id, player=player, text=text))


# --- SERVICE - START GAME ----
def test_start_game_initiator_plays_white(service: ChessService, alice: TelegramUser, bob: TelegramUser) -> None:
    response = start(service, alice, bob)
    assert response.white.telegram_id == alice.id
    assert response.black.telegram_id == bob.id
    assert response.fen_state == chess.STARTING_FEN
    assert response.side_to_move == Color.WHITE
    assert response.move_count == 0
    assert response.status == Status.ONGOING
    assert response.version == 0


def test_start_game_with_first_move(service: ChessService, alice: TelegramUser, bob: TelegramUser) -> None:
    response = start(service, alice, bob, first_move="e4")
    assert response.move_count == 1
    assert response.last_move_uci == "e2e4"
    assert response.side_to_move == Color.BLACK


def test_start_game_with_illegal_first_move_stores_nothing(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser
) -> None:
    with pytest.raises(IllegalCandidateError):
        start(service, alice, bob, first_move="e2e5")
    assert mock_repository._games == {}


def test_start_game_against_mentioned_user(service: ChessService, alice: TelegramUser) -> None:
    response = service.start_game(
        StartGameRequest(chat_id=CHAT, initiator=alice, opponent=NamedOpponent(username="@dave"))
    )
    assert response.black.is_placeholder
    assert response.black.username == "dave"


def test_mentioned_user_claims_game_on_first_move(
    service: ChessService, alice: TelegramUser
) -> None:
    game = service.start_game(
        StartGameRequest(chat_id=CHAT, initiator=alice, opponent=NamedOpponent(username="dave"), first_move="e4")
    )
    dave = TelegramUser(id=2024, username="dave")
    response = move(service, game.game_id, dave, "e5")
    assert response.black.telegram_id == dave.id
    assert response.move_count == 2


@pytest.mark.parametrize(
    "opponent",
    [DirectOpponent(user=TelegramUser(id=1001, username="alice")), NamedOpponent(username="alice")],
)
def test_cannot_play_yourself(service: ChessService, alice: TelegramUser, opponent) -> None:
    with pytest.raises(SelfPlayError):
        service.start_game(StartGameRequest(chat_id=CHAT, initiator=alice, opponent=opponent))


def test_one_ongoing_game_per_pair(service: ChessService, alice: TelegramUser, bob: TelegramUser, carol: TelegramUser) -> None:
    start(service, alice, bob)
    with pytest.raises(DuplicateSessionError):
        start(service, alice, bob)
    with pytest.raises(DuplicateSessionError):
        start(service, bob, alice)
    # other pairs and other chats are fine
    start(service, alice, carol)
    service.start_game(StartGameRequest(chat_id=CHAT + 1, initiator=alice, opponent=DirectOpponent(user=bob)))


def test_new_game_allowed_after_previous_finished(
    service: ChessService, alice: TelegramUser, bob: TelegramUser
) -> None:
    game = start(service, alice, bob)
    service.resign(ResignRequest(chat_id=CHAT, game_id=game.game_id, player=bob))
    assert start(service, bob, alice).white.telegram_id == bob.id


# --- SERVICE - MOVES ----
def test_moves_alternate(service: ChessService, alice: TelegramUser, bob: TelegramUser) -> None:
    game = start(service, alice, bob)
    after_white = move(service, game.game_id, alice, "e4")
    assert after_white.version == 1
    assert after_white.side_to_move == Color.BLACK

    with pytest.raises(TurnViolationError):
        move(service, game.game_id, alice, "d4")

    after_black = move(service, game.game_id, bob, "e5")
    assert after_black.version == 2
    assert after_black.move_count == 2


def test_stranger_cannot_move(service: ChessService, alice: TelegramUser, bob: TelegramUser, carol: TelegramUser) -> None:
    game = start(service, alice, bob)
    with pytest.raises(ParticipantViolationError):
        move(service, game.game_id, carol, "e4")


def test_unknown_game(service: ChessService, alice: TelegramUser) -> None:
    with pytest.raises(GameNotFoundError):
        move(service, 999, alice, "e4")
    with pytest.raises(GameNotFoundError):
        service.get_game(999)


def test_checkmate_updates_stats(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser
) -> None:
    game = start(service, alice, bob)
    for player, text in [(alice, "f3"), (bob, "e5"), (alice, "g4")]:
        move(service, game.game_id, player, text)
    final = move(service, game.game_id, bob, "Qh4#")

    assert final.is_finished
    assert final.result == GameResult.BLACK_WIN
    assert final.outcome == Outcome.CHECKMATE
    assert final.winner_color == Color.BLACK
    assert mock_repository.get_player(final.black.id).wins == 1
    assert mock_repository.get_player(final.white.id).losses == 1


def test_concurrent_write_is_rejected(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser, monkeypatch: pytest.MonkeyPatch
) -> None:
    game = start(service, alice, bob)
    stale_copy = mock_repository.get_game(game.game_id)
    move(service, game.game_id, alice, "e4")

    # the next request read the game before the first write landed
    monkeypatch.setattr(mock_repository, "get_game", lambda game_id: deepcopy(stale_copy))
    with pytest.raises(StaleSessionError):
        move(service, game.game_id, alice, "d4")


# --- SERVICE - RESIGN / DRAW ----
def test_resign_after_draw_offer(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser
) -> None:
    game = start(service, alice, bob)
    offered = service.propose_draw(DrawRequest(chat_id=CHAT, game_id=game.game_id, player=alice, message_id=7))
    assert offered.draw_proposed_by == offered.white.id

    final = service.resign(ResignRequest(chat_id=CHAT, game_id=game.game_id, player=bob))
    assert final.result == GameResult.WHITE_WIN
    assert final.outcome == Outcome.RESIGNATION
    assert final.draw_proposed_by is None
    assert mock_repository.get_player(final.black.id).losses == 1


def test_draw_handshake(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser
) -> None:
    game = start(service, alice, bob)
    with pytest.raises(NoPendingProposalError):
        service.accept_draw(AcceptDrawRequest(chat_id=CHAT, game_id=game.game_id, player=bob))

    service.propose_draw(DrawRequest(chat_id=CHAT, game_id=game.game_id, player=bob))
    final = service.accept_draw(AcceptDrawRequest(chat_id=CHAT, game_id=game.game_id, player=alice))
    assert final.result == GameResult.DRAW
    assert final.outcome == Outcome.DRAW_AGREED
    assert mock_repository.get_player(final.white.id).draws == 1
    assert mock_repository.get_player(final.black.id).draws == 1


# --- SERVICE - MESSAGES ----
def test_game_by_message(service: ChessService, alice: TelegramUser, bob: TelegramUser) -> None:
    game = start(service, alice, bob)
    service.link_message(game.game_id, CHAT, 501)
    assert service.game_by_message(CHAT, 501).game_id == game.game_id
    with pytest.raises(GameNotFoundError):
        service.game_by_message(CHAT, 502)


def test_prune_messages_keeps_latest(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser
) -> None:
    game = start(service, alice, bob)
    for message_id in (1, 2, 3):
        service.link_message(game.game_id, CHAT, message_id)
    assert service.prune_messages(game.game_id, keep=3) == [1, 2]
    assert mock_repository.list_messages(game.game_id) == [3]


# --- HISTORY SERVICE ----
def test_own_history(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser, carol: TelegramUser
) -> None:
    first = start(service, alice, bob)
    service.resign(ResignRequest(chat_id=CHAT, game_id=first.game_id, player=bob))
    second = start(service, carol, alice)

    response = HistoryService(mock_repository).history(HistoryRequest(player=alice))
    assert isinstance(response, PlayerHistoryResponse)
    assert response.player.wins == 1
    assert response.win_percentage == 100.0
    assert [entry.game_id for entry in response.games] == [second.game_id, first.game_id]


def test_history_pages(service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser) -> None:
    for _ in range(3):
        game = start(service, alice, bob)
        service.resign(ResignRequest(chat_id=CHAT, game_id=game.game_id, player=alice))

    history = HistoryService(mock_repository, page_size=2)
    assert len(history.history(HistoryRequest(player=alice, page=1)).games) == 2
    assert len(history.history(HistoryRequest(player=alice, page=2)).games) == 1
    assert history.history(HistoryRequest(player=alice, page=3)).games == []


def test_head_to_head(
    service: ChessService, mock_repository: MockRepository, alice: TelegramUser, bob: TelegramUser, carol: TelegramUser
) -> None:
    start(service, alice, bob)
    start(service, alice, carol)

    response = HistoryService(mock_repository).history(
        HistoryRequest(player=carol, usernames=["alice", "bob"])
    )
    assert isinstance(response, HeadToHeadResponse)
    assert response.total_games == 1
    assert response.player_a.username == "alice"
    assert response.player_b.username == "bob"


def test_history_of_unknown_user_is_empty(mock_repository: MockRepository, alice: TelegramUser) -> None:
    response = HistoryService(mock_repository).history(HistoryRequest(player=alice, usernames=["ghost"]))
    assert response.player.is_placeholder
    assert response.games == []
    assert response.win_percentage == 0.0
