"""Outbound side of the messaging platform. Implementations raise GatewayError on failure."""

from typing import Optional, Protocol

from kamachess.core.models import ChatId, MessageId


class MessagingGateway(Protocol):
    def send_message(
        self, chat_id: ChatId, text: str, reply_to: Optional[MessageId] = None
    ) -> MessageId:
        """Send HTML text. Returns the id of the posted message."""
        ...

    def send_photo(
        self, chat_id: ChatId, caption: str, png: bytes, reply_to: Optional[MessageId] = None
    ) -> MessageId: ...

    def delete_message(self, chat_id: ChatId, message_id: MessageId) -> None: ...
