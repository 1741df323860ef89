"""
Type definitions used across layers
"""

from enum import StrEnum


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Color":
        return Color.BLACK if self == Color.WHITE else Color.WHITE


class Status(StrEnum):
    ONGOING = "ongoing"
    FINISHED = "finished"


class GameResult(StrEnum):
    WHITE_WIN = "1-0"
    BLACK_WIN = "0-1"
    DRAW = "1/2-1/2"

    @classmethod
    def win_for(cls, color: Color) -> "GameResult":
        return cls.WHITE_WIN if color == Color.WHITE else cls.BLACK_WIN


class BoardStatus(StrEnum):
    """Terminal classification of a position, as reported by the position engine."""

    ONGOING = "ongoing"
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"


class Outcome(StrEnum):
    """Why a game ended."""

    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    RESIGNATION = "resignation"
    DRAW_AGREED = "draw agreed"
