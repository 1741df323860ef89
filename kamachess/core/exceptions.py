"""
Exceptions shared by all layers.

GameError and its subclasses are recoverable: the router turns them into a text reply.
PersistenceError and RenderError are collaborator failures and abort (or degrade) the current operation.
"""


class GameError(Exception):
    """Top-level exception for anything the player can be told about."""


class InvalidRequestError(GameError):
    """Request data does not pass validation."""


# --- MOVE NOTATION ---
class MoveParseError(GameError):
    """Text could not be turned into a single legal move."""


class NoLegalMatchError(MoveParseError):
    pass


class AmbiguousMatchError(MoveParseError):
    """More than one legal move fits the text. The hint explains how to disambiguate."""

    def __init__(self, message: str, hint: str = "") -> None:
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        message = super().__str__()
        return f"{message} {self.hint}" if self.hint else message


class IllegalCandidateError(MoveParseError):
    pass


class InvalidSquareError(MoveParseError):
    pass


# --- GAME SESSION ---
class GameSessionError(GameError):
    """Operation is not allowed in the current state of the session."""


class TurnViolationError(GameSessionError):
    pass


class ParticipantViolationError(GameSessionError):
    pass


class DuplicateSessionError(GameSessionError):
    pass


class SelfPlayError(GameSessionError):
    pass


class NoPendingProposalError(GameSessionError):
    pass


class OwnProposalRejectedError(GameSessionError):
    pass


class SessionFinishedError(GameSessionError):
    pass


class StaleSessionError(GameSessionError):
    """The stored session changed between read and write."""


class GameNotFoundError(GameSessionError):
    pass


# --- COLLABORATORS ---
class PersistenceError(Exception):
    """Storage failed. The operation was aborted and nothing was committed."""


class RenderError(Exception):
    """The board image could not be produced."""


class GatewayError(Exception):
    """The messaging platform rejected or failed a call."""
