"""
Update router
----

Entry point for one inbound chat update. Decides which operation the text asks for, calls the services
and posts the answer through the messaging gateway.

Routing (first match wins):

1. /help
2. /history [@a] [@b] [page]
3. a reply to one of the bot's messages: /resign, /draw, /accept (or /acceptdraw), anything else is a move
4. /start [@user] [move]: the opponent is the author of the replied-to message, else the first mention

Updates without text or sender, and messages sent by bots, are ignored.
"""

import logging
from html import escape
from typing import Callable, Optional

from kamachess.api import captions
from kamachess.api.gateway import MessagingGateway
from kamachess.api.models import (
    AcceptDrawRequest,
    DirectOpponent,
    DrawRequest,
    GameResponse,
    HeadToHeadResponse,
    HistoryRequest,
    Message,
    MoveRequest,
    NamedOpponent,
    ResignRequest,
    StartGameRequest,
    TelegramUser,
    Update,
)
from kamachess.api.parsing import command_of, extract_move, extract_page, extract_usernames
from kamachess.cache.board_images import BoardImageCache
from kamachess.chess import engine
from kamachess.chess.engine import Position
from kamachess.chess.render import render_png
from kamachess.core.config import Settings
from kamachess.core.exceptions import (
    GameError,
    GameNotFoundError,
    GatewayError,
    InvalidRequestError,
    PersistenceError,
    RenderError,
)
from kamachess.core.models import MessageId
from kamachess.core.shared_types import Color
from kamachess.services.chess_service import ChessService
from kamachess.services.history_service import HistoryService

logger = logging.getLogger(__name__)

Renderer = Callable[[Position, Color], bytes]

GENERIC_FAILURE = "Something went wrong, please try again later."
MOVE_HINT = "Please send a move like e4 or e2e4."
START_HINT = "Reply to a user's message or mention a user with /start to begin a game."


class UpdateRouter:
    def __init__(
        self,
        chess_service: ChessService,
        history_service: HistoryService,
        gateway: MessagingGateway,
        cache: BoardImageCache,
        settings: Settings,
        renderer: Renderer = render_png,
    ) -> None:
        self.chess = chess_service
        self.history = history_service
        self.gateway = gateway
        self.cache = cache
        self.settings = settings
        self.renderer = renderer

    def process_update(self, update: Update) -> None:
        message = update.message
        if message is None or not message.text or message.from_user is None:
            return
        if message.from_user.is_bot:
            return

        try:
            self._handle(message, message.from_user, message.text)
        except GatewayError:
            logger.exception("Messaging gateway failed while handling update %s", update.update_id)

    def _handle(self, message: Message, sender: TelegramUser, text: str) -> None:
        try:
            self._route(message, sender, text)
        except GameError as exc:
            logger.info("Rejected request in chat %s: %s", message.chat.id, exc)
            self._reply(message, escape(str(exc)))
        except PersistenceError:
            logger.exception("Storage failure in chat %s", message.chat.id)
            self._reply(message, GENERIC_FAILURE)

    def _route(self, message: Message, sender: TelegramUser, text: str) -> None:
        command = command_of(text)

        if command == "help":
            self._reply(message, captions.HELP_TEXT)
        elif command == "history":
            self._handle_history(message, sender, text)
        elif command != "start" and self._replied_to_bot(message):
            self._handle_game_reply(message, sender, text, command)
        elif command == "start":
            self._handle_start(message, sender, text)

    # --- COMMANDS ---
    def _handle_history(self, message: Message, sender: TelegramUser, text: str) -> None:
        request = HistoryRequest(
            player=sender,
            usernames=self._mentions(text),
            page=extract_page(text) or 1,
        )
        response = self.history.history(request)
        if isinstance(response, HeadToHeadResponse):
            self._reply(message, captions.format_head_to_head(response))
        else:
            self._reply(message, captions.format_player_history(response))

    def _handle_start(self, message: Message, sender: TelegramUser, text: str) -> None:
        reply = message.reply_to_message
        mentions = self._mentions(text)
        if reply is not None and reply.from_user is not None and not reply.from_user.is_bot:
            opponent = DirectOpponent(user=reply.from_user)
        elif mentions:
            opponent = NamedOpponent(username=mentions[0])
        else:
            raise InvalidRequestError(START_HINT)

        # mentions are never moves, even "@e4"
        arguments = " ".join(token for token in text.split()[1:] if not token.startswith("@"))
        game = self.chess.start_game(
            StartGameRequest(
                chat_id=message.chat.id,
                initiator=sender,
                opponent=opponent,
                first_move=extract_move(arguments),
            )
        )
        self._post_board(game, "Game started", reply_to=message.message_id)

    def _handle_game_reply(
        self, message: Message, sender: TelegramUser, text: str, command: Optional[str]
    ) -> None:
        assert message.reply_to_message is not None
        chat_id = message.chat.id
        try:
            target = self.chess.game_by_message(chat_id, message.reply_to_message.message_id)
        except GameNotFoundError:
            logger.debug("Reply to message %s is not about a game", message.reply_to_message.message_id)
            return

        if command == "resign":
            game = self.chess.resign(
                ResignRequest(chat_id=chat_id, game_id=target.game_id, player=sender)
            )
            self._post_board(game, "Game over", reply_to=message.message_id)
        elif command == "draw":
            game = self.chess.propose_draw(
                DrawRequest(
                    chat_id=chat_id,
                    game_id=target.game_id,
                    player=sender,
                    message_id=message.message_id,
                )
            )
            proposer = Color.WHITE if game.white.telegram_id == sender.id else Color.BLACK
            offer_id = self._reply(message, captions.draw_offer_text(game, proposer))
            self.chess.link_message(game.game_id, chat_id, offer_id)
        elif command in ("accept", "acceptdraw"):
            game = self.chess.accept_draw(
                AcceptDrawRequest(chat_id=chat_id, game_id=target.game_id, player=sender)
            )
            self._post_board(game, "Game over", reply_to=message.message_id)
        else:
            candidate = extract_move(text)
            if candidate is None:
                raise InvalidRequestError(MOVE_HINT)
            game = self.chess.make_move(
                MoveRequest(chat_id=chat_id, game_id=target.game_id, player=sender, text=candidate)
            )
            self._post_board(game, "Move played", reply_to=message.message_id)

    # --- OUTPUT ---
    def _post_board(self, game: GameResponse, header: str, reply_to: MessageId) -> MessageId:
        """Send the board image (text board if rendering fails), link it to the game and apply retention."""
        caption = captions.build_caption(header, game)
        position = Position(game.fen_state)
        orientation = game.side_to_move

        try:
            png = self.cache.get_or_render(
                position, orientation, lambda: self.renderer(position, orientation)
            )
        except RenderError as exc:
            logger.warning("Board image unavailable for game %s: %s", game.game_id, exc)
            board = escape(engine.ascii_board(position, orientation))
            message_id = self.gateway.send_message(
                game.chat_id, f"{caption}\n<pre>{board}</pre>", reply_to=reply_to
            )
        else:
            message_id = self.gateway.send_photo(game.chat_id, caption, png, reply_to=reply_to)

        self.chess.link_message(game.game_id, game.chat_id, message_id)
        if self.settings.no_trash:
            self._prune(game, keep=message_id)
        return message_id

    def _prune(self, game: GameResponse, keep: MessageId) -> None:
        for message_id in self.chess.prune_messages(game.game_id, keep):
            try:
                self.gateway.delete_message(game.chat_id, message_id)
            except GatewayError as exc:
                logger.warning("Could not delete message %s in chat %s: %s", message_id, game.chat_id, exc)

    def _reply(self, message: Message, text: str) -> MessageId:
        return self.gateway.send_message(message.chat.id, text, reply_to=message.message_id)

    # --- HELPERS ---
    def _replied_to_bot(self, message: Message) -> bool:
        reply = message.reply_to_message
        if reply is None or reply.from_user is None or not reply.from_user.is_bot:
            return False
        bot_username = self.settings.bot_username
        if bot_username and reply.from_user.username:
            return reply.from_user.username.lower() == bot_username.lower()
        return True

    def _mentions(self, text: str) -> list[str]:
        bot_username = self.settings.bot_username.lower()
        return [name for name in extract_usernames(text) if name.lower() != bot_username]
