"""Reply texts (HTML parse mode): board captions, game results, history and help."""

from html import escape
from typing import Optional

from kamachess.api.models import GameResponse, HeadToHeadResponse, PlayerHistoryResponse
from kamachess.chess import engine
from kamachess.core.models import HistoryEntry
from kamachess.core.shared_types import Color, Outcome

HELP_TEXT = """<b>Chess Bot Commands:</b>

<b>/start [@user] [move]</b>
Reply to a user's message or mention a user to start a game.
Examples: /start e4, /start @user Nf3

<b>/history [@user] [@user2] [page]</b>
View game history or head-to-head stats.
Examples:
• /history - Your stats
• /history @username - User's stats
• /history @user1 @user2 - Head-to-head
• /history 2 - Page 2

<b>Making Moves:</b>
Reply to the bot's board message with your move.
Supports: e4, e2e4, Nf6, O-O, etc.

<b>/resign</b>
Reply to the bot's board message to resign.

<b>/draw</b>
Reply to the bot's board message to propose a draw.

<b>/accept</b>
Reply to the bot's board message to accept a draw proposal.

Use /help to show this message."""

MORE_PAGES_HINT = "Use /history &lt;page&gt; for more."


def build_caption(header: str, game: GameResponse) -> str:
    lines = [
        f"{escape(header)}.",
        f"White: {game.white.mention_html()}",
        f"Black: {game.black.mention_html()}",
        f"To move: {game.player(game.side_to_move).mention_html()}",
    ]
    advantage = material_advantage(game)
    if advantage:
        lines.append(advantage)
    result = result_line(game)
    if result:
        lines.append(result)
    return "\n".join(lines)


def material_advantage(game: GameResponse) -> Optional[str]:
    score = engine.material_balance(engine.Position(game.fen_state))
    if score == 0:
        return None
    leader = game.white if score > 0 else game.black
    return f"{leader.mention_html()} +{abs(score)}"


def result_line(game: GameResponse) -> Optional[str]:
    if not game.is_finished:
        return None
    match game.outcome:
        case Outcome.CHECKMATE:
            return f"Checkmate. {_winner(game)} wins."
        case Outcome.STALEMATE:
            return "Draw by stalemate."
        case Outcome.RESIGNATION:
            loser = game.player(game.winner_color.opponent)
            return f"{loser.mention_html()} resigned. {_winner(game)} wins."
        case Outcome.DRAW_AGREED:
            return "Draw agreed."
    return f"Game over ({game.result})."


def draw_offer_text(game: GameResponse, proposer: Color) -> str:
    return (
        f"{game.player(proposer).mention_html()} offers a draw. "
        f"{game.player(proposer.opponent).mention_html()}, reply /accept to agree."
    )


def format_player_history(response: PlayerHistoryResponse) -> str:
    player = response.player
    header = (
        f"History for {escape(player.display_name())}.\n"
        f"Wins: {player.wins}, Losses: {player.losses}, Draws: {player.draws}, "
        f"Win%: {response.win_percentage:.1f}\n"
    )
    return header + _format_games(response.games)


def format_head_to_head(response: HeadToHeadResponse) -> str:
    header = (
        f"Head-to-head {escape(response.player_a.display_name())} vs "
        f"{escape(response.player_b.display_name())}. Total games: {response.total_games}\n"
    )
    return header + _format_games(response.games)


def _format_games(games: list[HistoryEntry]) -> str:
    if not games:
        body = "No games yet."
    else:
        body = "\n".join(
            f"Game {entry.game_id}: {escape(entry.white.display_name())} vs "
            f"{escape(entry.black.display_name())} ({entry.result or 'ongoing'})"
            for entry in games
        )
    return f"{body}\n{MORE_PAGES_HINT}"


def _winner(game: GameResponse) -> str:
    winner = game.winner_color
    return game.player(winner).mention_html() if winner else ""
