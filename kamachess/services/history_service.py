"""Player statistics and game history, paged."""

import logging

from kamachess.api.models import HeadToHeadResponse, HistoryRequest, PlayerHistoryResponse
from kamachess.core.models import PlayerModel
from kamachess.db.repository import GameRepository

logger = logging.getLogger(__name__)

PAGE_SIZE = 10


class HistoryService:
    def __init__(self, repository: GameRepository, page_size: int = PAGE_SIZE) -> None:
        self.repo = repository
        self.page_size = page_size

    def history(self, request: HistoryRequest) -> PlayerHistoryResponse | HeadToHeadResponse:
        """
        The requester's own history, a mentioned user's history, or head-to-head of two mentioned users.

        Mentioned users nobody has seen yet get a placeholder record, so the answer is an empty history
        rather than an error.
        """
        if request.usernames:
            player_a = self.repo.upsert_player_by_username(request.usernames[0])
        else:
            player_a = self.repo.upsert_player(request.player)

        if len(request.usernames) > 1:
            player_b = self.repo.upsert_player_by_username(request.usernames[1])
            return self.head_to_head(player_a, player_b, request.page)
        return self.user_history(player_a, request.page)

    def user_history(self, player: PlayerModel, page: int = 1) -> PlayerHistoryResponse:
        logger.debug("History of player %s, page %d", player.id, page)
        return PlayerHistoryResponse(
            player=player,
            page=page,
            games=self.repo.player_games(player.id, self.page_size, self._offset(page)),
        )

    def head_to_head(
        self, player_a: PlayerModel, player_b: PlayerModel, page: int = 1
    ) -> HeadToHeadResponse:
        logger.debug("Head-to-head %s vs %s, page %d", player_a.id, player_b.id, page)
        return HeadToHeadResponse(
            player_a=player_a,
            player_b=player_b,
            total_games=self.repo.count_head_to_head(player_a.id, player_b.id),
            page=page,
            games=self.repo.head_to_head(player_a.id, player_b.id, self.page_size, self._offset(page)),
        )

    def _offset(self, page: int) -> int:
        return (max(page, 1) - 1) * self.page_size
