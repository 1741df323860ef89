"""
Board rendering.

PNG pipeline: python-chess draws the SVG, svglib + reportlab rasterize it (pure Python).
Any failure along the way is raised as RenderError so callers can fall back to text.
"""

from io import BytesIO
from typing import Optional

import chess
import chess.svg
from reportlab.graphics import renderPM
from svglib.svglib import svg2rlg

from kamachess.chess.engine import Position
from kamachess.core.exceptions import RenderError
from kamachess.core.shared_types import Color

BOARD_SIZE = 560
LAST_MOVE_COLORS = {"square light lastmove": "#cdd26a", "square dark lastmove": "#aaa23a"}


def render_svg(
    position: Position,
    orientation: Color = Color.WHITE,
    last_move: Optional[chess.Move] = None,
) -> str:
    """SVG string of the board seen from orientation's side, with the last move highlighted."""
    board = position.board()
    return chess.svg.board(
        board=board,
        orientation=chess.WHITE if orientation == Color.WHITE else chess.BLACK,
        lastmove=last_move,
        check=board.king(board.turn) if board.is_check() else None,
        coordinates=True,
        colors=LAST_MOVE_COLORS,
        size=BOARD_SIZE,
    )


def render_png(
    position: Position,
    orientation: Color = Color.WHITE,
    last_move: Optional[chess.Move] = None,
) -> bytes:
    """Render the board to PNG bytes."""
    svg = render_svg(position, orientation, last_move)
    try:
        drawing = svg2rlg(BytesIO(svg.encode("utf-8")))
        if drawing is None:
            raise RenderError("svglib could not parse the board SVG")
        return renderPM.drawToString(drawing, fmt="PNG")
    except RenderError:
        raise
    except Exception as exc:
        raise RenderError(f"Failed to rasterize board: {exc}") from exc
