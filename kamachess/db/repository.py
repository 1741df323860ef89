"""Protocol repository (implemented with SQLAlchemy in sql_repository.py, replaced by in-memory mocks in tests)"""

from typing import Protocol

from kamachess.core.models import (
    ChatId,
    GameModel,
    HistoryEntry,
    MessageId,
    PlayerId,
    PlayerModel,
)


class PlayerIdentity(Protocol):
    """Just the parts of a messaging platform user the repository needs."""

    id: int
    username: str | None
    first_name: str | None
    last_name: str | None


class GameRepository(Protocol):
    """Persistence layer orchestration. Any storage failure is raised as PersistenceError."""

    # --- players ---
    def upsert_player(self, user: PlayerIdentity) -> PlayerModel:
        """Create or refresh a fully identified player, merging a placeholder with the same username into it."""
        ...

    def upsert_player_by_username(self, username: str) -> PlayerModel:
        """Find a player by username, creating a placeholder if nobody has it."""
        ...

    def get_player(self, player_id: PlayerId) -> PlayerModel | None: ...

    # --- games ---
    def create_game(self, game: GameModel) -> GameModel:
        """Store a new game (and its moves). The returned model carries the new id."""
        ...

    def get_game(self, game_id: int) -> GameModel | None: ...

    def find_ongoing_game(
        self, chat_id: ChatId, player_a: PlayerId, player_b: PlayerId
    ) -> GameModel | None:
        """Ongoing game for the unordered pair in this chat."""
        ...

    def find_game_by_message(
        self, chat_id: ChatId, message_id: MessageId
    ) -> GameModel | None: ...

    def update_game(self, game: GameModel, expected_version: int) -> GameModel:
        """
        Compare-and-swap write of an ongoing game.

        Raises StaleSessionError when the stored version moved on (or the game already finished).
        Moves not yet stored are appended. Finishing the game updates the players' counters once.
        """
        ...

    # --- message linkage ---
    def record_message(self, game_id: int, chat_id: ChatId, message_id: MessageId) -> None: ...

    def list_messages(self, game_id: int) -> list[MessageId]:
        """Linked message ids, oldest first."""
        ...

    def delete_messages(self, game_id: int, message_ids: list[MessageId]) -> None: ...

    # --- history ---
    def player_games(
        self, player_id: PlayerId, limit: int, offset: int
    ) -> list[HistoryEntry]: ...

    def head_to_head(
        self, player_a: PlayerId, player_b: PlayerId, limit: int, offset: int
    ) -> list[HistoryEntry]: ...

    def count_head_to_head(self, player_a: PlayerId, player_b: PlayerId) -> int: ...
