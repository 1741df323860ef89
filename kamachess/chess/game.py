"""
The GameSession class is the entrypoint into the domain layer for the service layer.
It owns the rules of a match between two players: whose turn it is, resignation, the draw handshake
and how the result is derived. Board rules are delegated to the position engine, notation to the MoveResolver.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Self

from kamachess.chess import engine
from kamachess.chess.engine import Position
from kamachess.chess.notation import MoveResolver
from kamachess.core.exceptions import (
    NoPendingProposalError,
    OwnProposalRejectedError,
    ParticipantViolationError,
    SessionFinishedError,
    TurnViolationError,
)
from kamachess.core.models import GameModel, MessageId, MoveModel, PlayerId
from kamachess.core.shared_types import BoardStatus, Color, GameResult, Outcome, Status


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DrawProposal:
    proposed_by: PlayerId
    message_id: Optional[MessageId] = None


@dataclass
class GameSession:
    # --- DOMAIN LAYER API CALLED BY SERVICE---

    chat_id: int
    players: dict[Color, PlayerId]
    position: Position
    moves: list[MoveModel] = field(default_factory=list)
    status: Status = Status.ONGOING
    result: Optional[GameResult] = None
    draw_proposal: Optional[DrawProposal] = None
    version: int = 0
    id: Optional[int] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    # Only known for a transition made in this process, it is not stored
    outcome: Optional[Outcome] = None

    @classmethod
    def new_game(cls, chat_id: int, white: PlayerId, black: PlayerId) -> Self:
        """Standard starting position, white to move."""
        return cls(
            chat_id=chat_id,
            players={Color.WHITE: white, Color.BLACK: black},
            position=engine.initial_position(),
            started_at=utc_now(),
        )

    @classmethod
    def from_model(cls, model: GameModel) -> Self:
        """Define how to construct a GameSession from the information the Service layer actually has"""
        proposal = (
            DrawProposal(model.draw_proposed_by, model.draw_message_id)
            if model.draw_proposed_by is not None
            else None
        )
        return cls(
            chat_id=model.chat_id,
            players={Color.WHITE: model.white_id, Color.BLACK: model.black_id},
            position=engine.position_from_fen(model.current_fen),
            moves=list(model.moves),
            status=Status(model.status),
            result=GameResult(model.result) if model.result else None,
            draw_proposal=proposal,
            version=model.version,
            id=model.id,
            started_at=model.started_at,
            ended_at=model.ended_at,
        )

    def to_model(self) -> GameModel:
        """Encode back into a format the Service layer uses"""
        return GameModel(
            chat_id=self.chat_id,
            white_id=self.players[Color.WHITE],
            black_id=self.players[Color.BLACK],
            current_fen=self.position.fen,
            moves=list(self.moves),
            status=self.status.value,
            result=self.result.value if self.result else None,
            draw_proposed_by=self.draw_proposal.proposed_by if self.draw_proposal else None,
            draw_message_id=self.draw_proposal.message_id if self.draw_proposal else None,
            version=self.version,
            id=self.id,
            started_at=self.started_at,
            ended_at=self.ended_at,
        )

    # --- STATE QUERIES ---
    @property
    def is_finished(self) -> bool:
        return self.status == Status.FINISHED

    @property
    def side_to_move(self) -> Color:
        """Always derived from the position, never stored separately."""
        return engine.side_to_move(self.position)

    @property
    def player_to_move(self) -> PlayerId:
        return self.players[self.side_to_move]

    @property
    def last_move(self) -> Optional[MoveModel]:
        return self.moves[-1] if self.moves else None

    @property
    def winner(self) -> Optional[PlayerId]:
        if self.result == GameResult.WHITE_WIN:
            return self.players[Color.WHITE]
        if self.result == GameResult.BLACK_WIN:
            return self.players[Color.BLACK]
        return None

    def color_of(self, player: PlayerId) -> Color:
        for color, player_id in self.players.items():
            if player_id == player:
                return color
        raise ParticipantViolationError("This game belongs to other players.")

    # --- OPERATIONS ---
    def make_move(self, player: PlayerId, text: str, resolver: MoveResolver) -> MoveModel:
        """
        Attempt to make a move
        -----

        1. game must be ongoing, player must be one of the two participants
        2. it must be the player's turn (side to move comes from the position)
        3. resolve the text into a legal move (parse errors leave the session untouched)
        4. clear any pending draw proposal: moving is an implicit decline
        5. log the move, advance the position
        6. checkmate / stalemate ends the game
        """
        self._assert_ongoing()
        color = self.color_of(player)
        if player != self.player_to_move:
            raise TurnViolationError("It is not your turn.")

        move = resolver.resolve(self.position, text)

        self.draw_proposal = None
        record = MoveModel(
            move_number=len(self.moves) + 1,
            uci=move.uci(),
            played_by=player,
            san=text.strip(),
            played_at=utc_now(),
        )
        self.moves.append(record)
        self.position = engine.apply(self.position, move)
        self._update_game_status(mover=color)
        return record

    def resign(self, player: PlayerId) -> GameResult:
        """Resigning is allowed at any time, whoever's turn it is. The opponent wins."""
        self._assert_ongoing()
        color = self.color_of(player)
        result = GameResult.win_for(color.opponent)
        self._finish(result, Outcome.RESIGNATION)
        return result

    def propose_draw(self, player: PlayerId, message_id: Optional[MessageId] = None) -> None:
        """A newer proposal (from either side) replaces an unanswered one."""
        self._assert_ongoing()
        self.color_of(player)
        self.draw_proposal = DrawProposal(proposed_by=player, message_id=message_id)

    def accept_draw(self, player: PlayerId) -> GameResult:
        self._assert_ongoing()
        self.color_of(player)
        if self.draw_proposal is None:
            raise NoPendingProposalError("There is no draw proposal to accept.")
        if self.draw_proposal.proposed_by == player:
            raise OwnProposalRejectedError("You cannot accept your own draw proposal.")
        self._finish(GameResult.DRAW, Outcome.DRAW_AGREED)
        return GameResult.DRAW

    # -- PRIVATE HELPERS ---
    def _assert_ongoing(self) -> None:
        if self.is_finished:
            raise SessionFinishedError(f"This game is already over ({self.result}).")

    def _update_game_status(self, mover: Color) -> None:
        """NOTE the position has already been updated. The side that just moved delivered mate, if any."""
        board_status = engine.status(self.position)
        if board_status == BoardStatus.CHECKMATE:
            self._finish(GameResult.win_for(mover), Outcome.CHECKMATE)
        elif board_status == BoardStatus.STALEMATE:
            self._finish(GameResult.DRAW, Outcome.STALEMATE)

    def _finish(self, result: GameResult, outcome: Outcome) -> None:
        self.status = Status.FINISHED
        self.result = result
        self.outcome = outcome
        self.draw_proposal = None
        self.ended_at = utc_now()
