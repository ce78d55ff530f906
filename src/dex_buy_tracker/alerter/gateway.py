"""Telegram delivery of rendered alerts via python-telegram-bot."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import TelegramError

from dex_buy_tracker.alerter.formatter import html_to_plain
from dex_buy_tracker.alerter.models import AlertButton

logger = logging.getLogger(__name__)

# Telegram rejects media captions longer than this, in UTF-16 units after
# entity parsing.
CAPTION_LIMIT = 1024

Keyboard = Sequence[Sequence[AlertButton]]


def caption_length(caption: str) -> int:
    """Length of an HTML caption as Telegram counts it."""
    return len(html_to_plain(caption).encode("utf-16-le")) // 2


def build_markup(keyboard: Keyboard) -> InlineKeyboardMarkup | None:
    """Convert button rows to a Telegram inline keyboard."""
    rows = [
        [InlineKeyboardButton(button.text, url=button.url) for button in row]
        for row in keyboard
        if row
    ]
    return InlineKeyboardMarkup(rows) if rows else None


class TelegramGateway:
    """Sends text, image and animation alerts, reporting success per call.

    Delivery failures are logged and reported as False, never raised or
    retried.
    """

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    @classmethod
    def from_token(cls, token: str) -> TelegramGateway:
        return cls(Bot(token=token))

    async def start(self) -> None:
        await self._bot.initialize()

    async def aclose(self) -> None:
        try:
            await self._bot.shutdown()
        except TelegramError as e:
            logger.warning("Telegram bot shutdown failed: %s", e)

    async def send_text(self, chat_id: str, text: str, keyboard: Keyboard = ()) -> bool:
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=build_markup(keyboard),
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
        except TelegramError as e:
            logger.error("Failed to send text alert to %s: %s", chat_id, e)
            return False
        return True

    async def send_image(
        self, chat_id: str, image: str, caption: str, keyboard: Keyboard = ()
    ) -> bool:
        length = caption_length(caption)
        if length > CAPTION_LIMIT:
            logger.warning("Caption too long for image (%d units), sending text", length)
            return await self.send_text(chat_id, caption, keyboard)
        try:
            await self._bot.send_photo(
                chat_id=chat_id,
                photo=image,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=build_markup(keyboard),
            )
        except TelegramError as e:
            logger.error("Failed to send image alert to %s: %s", chat_id, e)
            return False
        return True

    async def send_animation(
        self, chat_id: str, animation: str, caption: str, keyboard: Keyboard = ()
    ) -> bool:
        length = caption_length(caption)
        if length > CAPTION_LIMIT:
            logger.warning(
                "Caption too long for animation (%d units), sending text", length
            )
            return await self.send_text(chat_id, caption, keyboard)
        try:
            await self._bot.send_animation(
                chat_id=chat_id,
                animation=animation,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=build_markup(keyboard),
            )
        except TelegramError as e:
            logger.error("Failed to send animation alert to %s: %s", chat_id, e)
            return False
        return True
