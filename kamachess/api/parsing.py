"""Pulling commands, @mentions, page numbers and move tokens out of chat text."""

from typing import Optional

from kamachess.chess.notation import KINGSIDE_ALIASES, QUEENSIDE_ALIASES, normalize

MOVE_SYMBOLS = "-+#="
PIECE_LETTERS = "KQRBN"
FILE_LETTERS = "abcdefgh"


def command_of(text: str) -> Optional[str]:
    """'/start@kamachess_bot e4' -> 'start'. None when the text is not a command."""
    first = text.strip().split(maxsplit=1)[0] if text.strip() else ""
    if not first.startswith("/"):
        return None
    return first[1:].split("@", 1)[0].lower()


def extract_usernames(text: str) -> list[str]:
    usernames = []
    for token in text.split():
        if not token.startswith("@"):
            continue
        name = token.lstrip("@").strip("".join(_non_name_chars(token)))
        if name:
            usernames.append(name)
    return usernames


def extract_page(text: str) -> Optional[int]:
    """First whole number in the text."""
    for token in text.split():
        if token.isdigit():
            return int(token)
    return None


def extract_move(text: str) -> Optional[str]:
    """
    The last token that looks like a move, normalized to Latin letters.

    Surrounding punctuation is trimmed, notation symbols (- + # =) are kept.
    """
    for token in reversed(text.split()):
        cleaned = token.strip("".join(_non_move_chars(token)))
        candidate = normalize(cleaned)
        if is_move_candidate(candidate):
            return candidate
    return None


def is_move_candidate(token: str) -> bool:
    if not 2 <= len(token) <= 7:
        return False
    alias = token.rstrip("+#").lower()
    if alias in KINGSIDE_ALIASES or alias in QUEENSIDE_ALIASES:
        return True
    if not all(c.isascii() and (c.isalnum() or c in MOVE_SYMBOLS) for c in token):
        return False
    if not any(c.isdigit() for c in token):
        return False
    first = token[0]
    return first.upper() in PIECE_LETTERS or first.lower() in FILE_LETTERS


def _non_move_chars(token: str) -> set[str]:
    return {c for c in token if not (c.isalnum() or c in MOVE_SYMBOLS)}


def _non_name_chars(token: str) -> set[str]:
    return {c for c in token if not (c.isalnum() or c == "_")}
