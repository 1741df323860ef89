"""
Thin facade over the python-chess rules engine.

Positions are immutable values keyed by their FEN string. The rest of the code only
asks the questions listed here (legal moves, apply, terminal status, side to move),
so the rules engine never leaks past this module except for chess.Move values.
"""

from dataclasses import dataclass

import chess

from kamachess.core.exceptions import IllegalCandidateError
from kamachess.core.shared_types import BoardStatus, Color


@dataclass(frozen=True)
class Position:
    """Complete board state. The FEN string is the canonical serialization and the identity key."""

    fen: str

    def board(self) -> chess.Board:
        """A fresh, mutable python-chess board for this position."""
        return chess.Board(self.fen)


def initial_position() -> Position:
    return Position(chess.STARTING_FEN)


def position_from_fen(fen: str) -> Position:
    """Normalize a stored FEN through the engine (raises ValueError on malformed input)."""
    return Position(chess.Board(fen).fen())


def legal_moves(position: Position) -> list[chess.Move]:
    return list(position.board().legal_moves)


def apply(position: Position, move: chess.Move) -> Position:
    """Return the position after move. The move must be legal for this position."""
    board = position.board()
    if move not in board.legal_moves:
        raise IllegalCandidateError(f"Move {move.uci()} is not legal in this position.")
    board.push(move)
    return Position(board.fen())


def status(position: Position) -> BoardStatus:
    board = position.board()
    if board.is_checkmate():
        return BoardStatus.CHECKMATE
    if board.is_stalemate():
        return BoardStatus.STALEMATE
    return BoardStatus.ONGOING


def side_to_move(position: Position) -> Color:
    return Color.WHITE if position.board().turn == chess.WHITE else Color.BLACK


def material_balance(position: Position) -> int:
    """Material difference in pawns (positive: white is ahead)."""
    board = position.board()
    score = 0
    for piece_type, value in PIECE_VALUES.items():
        white = len(board.pieces(piece_type, chess.WHITE))
        black = len(board.pieces(piece_type, chess.BLACK))
        score += (white - black) * value
    return score


def ascii_board(position: Position, orientation: Color = Color.WHITE) -> str:
    board = position.board()
    if orientation == Color.BLACK:
        board = board.transform(chess.flip_vertical).transform(chess.flip_horizontal)
    return str(board)


PIECE_VALUES: dict[chess.PieceType, int] = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
}
