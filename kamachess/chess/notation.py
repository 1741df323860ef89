"""
Move notation resolver
----

Turns free text typed by a player into exactly one legal move for a position.

Key idea: an ordered list of independent "try-parse" strategies (castling, SAN, coordinates).
Each strategy is a pure function (position, token) -> Move | None:

* returns None when the token is not written in its notation,
* raises a MoveParseError when it is, but does not identify exactly one legal move,
* otherwise returns a move picked from the engine's legal move list.

The resolver is a lookup layer over the engine's legality oracle, not a rules implementation:
every move it returns comes out of engine.legal_moves().
"""

import re
from typing import Callable, Optional, Sequence

import chess

from kamachess.chess import engine
from kamachess.chess.engine import Position
from kamachess.core.exceptions import (
    AmbiguousMatchError,
    IllegalCandidateError,
    InvalidSquareError,
    MoveParseError,
    NoLegalMatchError,
)
from kamachess.core.shared_types import Color

Strategy = Callable[[Position, str], Optional[chess.Move]]

# Cyrillic letters that look like (or are typed instead of) the Latin letters used in notation
CYRILLIC_TO_LATIN = str.maketrans(
    {
        "а": "a",
        "б": "b",
        "с": "c",
        "д": "d",
        "е": "e",
        "ф": "f",
        "г": "g",
        "х": "h",
        "о": "o",
        "А": "A",
        "В": "B",
        "С": "C",
        "Д": "D",
        "Е": "E",
        "Ф": "F",
        "Г": "G",
        "Х": "H",
        "К": "K",
        "Н": "N",
        "Р": "R",
        "О": "O",
    }
)

KINGSIDE_ALIASES = frozenset({"o-o", "0-0", "00", "oo"})
QUEENSIDE_ALIASES = frozenset({"o-o-o", "0-0-0", "000", "ooo"})

PIECE_LETTERS: dict[str, chess.PieceType] = {
    "K": chess.KING,
    "Q": chess.QUEEN,
    "R": chess.ROOK,
    "B": chess.BISHOP,
    "N": chess.KNIGHT,
    "P": chess.PAWN,
}

PROMOTION_LETTERS: dict[str, chess.PieceType] = {
    "Q": chess.QUEEN,
    "R": chess.ROOK,
    "B": chess.BISHOP,
    "N": chess.KNIGHT,
}

# source + destination (+ promotion), left to the coordinate strategy
COORDINATE_PATTERN = re.compile(r"[a-h][1-8][a-h][1-8][qrbnQRBN]?")

DISAMBIGUATION_HINT = "Use disambiguation like Nbd7 or R1e2."
PROMOTION_HINT = "Add the promotion piece, e.g. e8=Q."
COORDINATE_HINT = "Use coordinate form like e2e4 or SAN like Nf6."


def normalize(text: str) -> str:
    """Map Cyrillic lookalikes to Latin and trim whitespace."""
    return text.strip().translate(CYRILLIC_TO_LATIN)


def _strip_check_markers(token: str) -> str:
    return token.rstrip("+#")


# --- STRATEGIES ---
def parse_castling(position: Position, token: str) -> Optional[chess.Move]:
    """O-O / 0-0 / 00 / oo and the long-side equivalents, any case."""
    alias = _strip_check_markers(token).lower()
    if alias in KINGSIDE_ALIASES:
        target_file = 6
    elif alias in QUEENSIDE_ALIASES:
        target_file = 2
    else:
        return None

    home_rank = 0 if engine.side_to_move(position) == Color.WHITE else 7
    candidate = chess.Move(
        chess.square(4, home_rank), chess.square(target_file, home_rank)
    )
    if candidate in engine.legal_moves(position):
        return candidate
    raise IllegalCandidateError("Castling is not legal in this position.")


def parse_san(position: Position, token: str) -> Optional[chess.Move]:
    """
    Standard algebraic notation (e4, Nf3, exd5, Nbd7, R1e2, Qh4e1, e8=Q, e8Q, Qxf7#)
    ----

    1. strip check/mate markers; tokens shaped like e2e4 or b1d2 are coordinates, not SAN
    2. split off the promotion piece (=Q or a piece letter right after the rank digit)
    3. drop capture markers (advisory only)
    4. last two characters are the destination, what remains in front is piece letter + disambiguation
    """
    text = _strip_check_markers(token)
    if COORDINATE_PATTERN.fullmatch(text):
        return None

    promotion: Optional[chess.PieceType] = None
    if "=" in text:
        text, _, promotion_text = text.partition("=")
        promotion = PROMOTION_LETTERS.get(promotion_text.upper())
        if promotion is None:
            raise IllegalCandidateError(
                f"Unknown promotion piece {promotion_text!r}. Use Q, R, B, or N."
            )
    elif len(text) >= 3 and text[-2].isdigit() and text[-1].upper() in PROMOTION_LETTERS:
        promotion = PROMOTION_LETTERS[text[-1].upper()]
        text = text[:-1]

    text = text.replace("x", "").replace("X", "")
    if len(text) < 2:
        return None

    destination_text = text[-2:].lower()
    try:
        destination = chess.parse_square(destination_text)
    except ValueError:
        raise InvalidSquareError(
            f"Invalid destination square {destination_text!r} in {token!r}."
        ) from None

    candidates = [
        move
        for move in engine.legal_moves(position)
        if move.to_square == destination
        and (promotion is None or move.promotion == promotion)
    ]
    if not candidates:
        raise NoLegalMatchError(f"No legal move to {destination_text}.")

    board = position.board()
    matches: list[chess.Move] = []
    for piece_type, hint in _interpretations(text[:-2]):
        matches = _filter_by_piece(board, candidates, piece_type, hint)
        if matches:
            break

    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise NoLegalMatchError(
            f"No legal {_piece_description(text[:-2])} move to {destination_text} for {token!r}. "
            "Try a different move or use coordinate notation like e2e4."
        )
    if promotion is None and len({(m.from_square, m.to_square) for m in matches}) == 1:
        raise AmbiguousMatchError(f"Ambiguous move: {token}.", hint=PROMOTION_HINT)
    raise AmbiguousMatchError(f"Ambiguous move: {token}.", hint=DISAMBIGUATION_HINT)


def parse_coordinates(position: Position, token: str) -> Optional[chess.Move]:
    """Coordinate notation: a bare target square (e4) or source+target(+promotion) (e2e4, e7e8q)."""
    text = _strip_check_markers(token).lower()

    if len(text) == 2:
        destination = _parse_square(text, "square")
        matches = [
            move
            for move in engine.legal_moves(position)
            if move.to_square == destination
        ]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise NoLegalMatchError(f"No legal move to {text}.")
        raise AmbiguousMatchError(f"Ambiguous move: {token}.", hint=COORDINATE_HINT)

    if len(text) in (4, 5):
        from_square = _parse_square(text[0:2], "source square")
        to_square = _parse_square(text[2:4], "destination square")
        promotion = None
        if len(text) == 5:
            promotion = PROMOTION_LETTERS.get(text[4].upper())
            if promotion is None:
                raise IllegalCandidateError(
                    "Unknown promotion piece. Use q, r, b, or n."
                )
        candidate = chess.Move(from_square, to_square, promotion=promotion)
        if candidate in engine.legal_moves(position):
            return candidate
        raise IllegalCandidateError(f"Illegal move: {token}. Try e4, e2e4, or Nf6.")

    return None


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (parse_castling, parse_san, parse_coordinates)

# When every strategy fails, report the error that tells the player the most.
_ERROR_PRIORITY: tuple[type[MoveParseError], ...] = (
    AmbiguousMatchError,
    IllegalCandidateError,
    NoLegalMatchError,
    InvalidSquareError,
)


class MoveResolver:
    """Resolve text against a position by trying each strategy in order."""

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> None:
        self.strategies = tuple(strategies)

    def resolve(self, position: Position, text: str) -> chess.Move:
        token = normalize(text)
        if not token:
            raise NoLegalMatchError("Please send a move like e4 or e2e4.")

        errors: list[MoveParseError] = []
        for strategy in self.strategies:
            try:
                move = strategy(position, token)
            except MoveParseError as error:
                errors.append(error)
                continue
            if move is not None:
                return move

        raise _most_informative(errors, token)


def resolve(position: Position, text: str) -> chess.Move:
    """Module level shortcut using the default strategies."""
    return MoveResolver().resolve(position, text)


# --- HELPERS ---
def _interpretations(prefix: str) -> list[tuple[chess.PieceType, str]]:
    """
    Readings of what stands in front of the destination square, (piece type, disambiguation),
    in the order they are tried. The first reading with a legal match wins.

    A lowercase 'b' is the b-file pawn first and the bishop only when no pawn move fits.
    """
    if not prefix:
        return [(chess.PAWN, "")]
    first, rest = prefix[0], prefix[1:]
    if first == "b":
        return [(chess.PAWN, prefix), (chess.BISHOP, rest)]
    if first.upper() in PIECE_LETTERS:
        return [(PIECE_LETTERS[first.upper()], rest)]
    return [(chess.PAWN, prefix)]


def _filter_by_piece(
    board: chess.Board,
    candidates: list[chess.Move],
    piece_type: chess.PieceType,
    hint: str,
) -> list[chess.Move]:
    moves = [
        move
        for move in candidates
        if board.piece_type_at(move.from_square) == piece_type
        and _matches_disambiguation(move, hint.lower())
    ]
    if piece_type == chess.PAWN and not hint:
        # A pawn move written without its source file is a push, captures always name the file.
        pushes = [
            move
            for move in moves
            if chess.square_file(move.from_square) == chess.square_file(move.to_square)
        ]
        return pushes or moves
    return moves


def _matches_disambiguation(move: chess.Move, hint: str) -> bool:
    if not hint:
        return True
    if len(hint) == 1:
        if hint in chess.FILE_NAMES:
            return chess.square_file(move.from_square) == chess.FILE_NAMES.index(hint)
        if hint in chess.RANK_NAMES:
            return chess.square_rank(move.from_square) == chess.RANK_NAMES.index(hint)
        return False
    if len(hint) == 2:
        try:
            return move.from_square == chess.parse_square(hint)
        except ValueError:
            return False
    return False


def _parse_square(text: str, what: str) -> chess.Square:
    try:
        return chess.parse_square(text)
    except ValueError:
        raise InvalidSquareError(f"Invalid {what}: {text!r}.") from None


def _piece_description(prefix: str) -> str:
    readings = {chess.piece_name(piece_type) for piece_type, _ in _interpretations(prefix)}
    return " or ".join(sorted(readings))


def _most_informative(errors: list[MoveParseError], token: str) -> MoveParseError:
    for error_type in _ERROR_PRIORITY:
        for error in errors:
            if isinstance(error, error_type):
                return error
    return NoLegalMatchError(
        f"Could not read {token!r} as a move. Try e4, e2e4, or Nf6."
    )
