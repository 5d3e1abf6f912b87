"""
Отправка сообщений в Telegram

Тонкая обёртка над Bot: движок тикетов работает только с ней,
в тестах её заменяет фейковый транспорт.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramRetryAfter
from aiogram.types import (
    ForceReply,
    InlineKeyboardMarkup,
    Message,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChatId = Union[int, str]
ReplyMarkup = Union[InlineKeyboardMarkup, ReplyKeyboardMarkup, ReplyKeyboardRemove, ForceReply]


class TelegramTransport:
    """Отправка / редактирование / удаление сообщений с обработкой flood control"""

    def __init__(self, bot: Bot, max_retries: int = 3, retry_delay: float = 1.0):
        self.bot = bot
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def _call_safe(self, call: Callable[[], Awaitable[T]], what: str) -> T:
        for attempt in range(self.max_retries):
            try:
                return await call()
            except TelegramRetryAfter as e:
                if attempt == self.max_retries - 1:
                    raise
                logger.warning(
                    f"Flood control on {what}: waiting {e.retry_after} seconds "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(e.retry_after)
            except TelegramBadRequest:
                raise
            except TelegramAPIError as e:
                if attempt == self.max_retries - 1:
                    raise
                logger.error(f"Failed to {what}: {e}", exc_info=True)
                await asyncio.sleep(self.retry_delay)

    async def _send(self, chat_id: ChatId, text: str, reply_markup: Optional[ReplyMarkup]) -> int:
        message: Message = await self._call_safe(
            lambda: self.bot.send_message(
                chat_id,
                text,
                reply_markup=reply_markup,
                disable_web_page_preview=True
            ),
            f"send message to {chat_id}"
        )
        return message.message_id

    async def send_direct(self, chat_id: ChatId, text: str) -> int:
        """Обычное сообщение. Возвращает message_id"""
        return await self._send(chat_id, text, None)

    async def send_with_buttons(self, chat_id: ChatId, text: str, markup: InlineKeyboardMarkup) -> int:
        """Сообщение с inline-кнопками"""
        return await self._send(chat_id, text, markup)

    async def send_keyboard(
        self,
        chat_id: ChatId,
        text: str,
        markup: Union[ReplyKeyboardMarkup, ReplyKeyboardRemove]
    ) -> int:
        """Сообщение с reply-клавиатурой (варианты ответа мастера)"""
        return await self._send(chat_id, text, markup)

    async def edit_message(
        self,
        chat_id: ChatId,
        message_id: int,
        text: str,
        markup: Optional[InlineKeyboardMarkup] = None
    ) -> bool:
        """Изменить текст сообщения (без markup - кнопки убираются)"""
        try:
            await self._call_safe(
                lambda: self.bot.edit_message_text(
                    text=text,
                    chat_id=chat_id,
                    message_id=message_id,
                    reply_markup=markup,
                    disable_web_page_preview=True
                ),
                f"edit message {message_id} in {chat_id}"
            )
            return True
        except TelegramBadRequest as e:
            # "message is not modified" и удалённые сообщения
            logger.warning(f"Cannot edit message {message_id} in {chat_id}: {e.message}")
            return False
        except TelegramAPIError as e:
            logger.error(f"Failed to edit message {message_id} in {chat_id}: {e}")
            return False

    async def delete_message(self, chat_id: ChatId, message_id: int) -> bool:
        try:
            await self._call_safe(
                lambda: self.bot.delete_message(chat_id, message_id),
                f"delete message {message_id} in {chat_id}"
            )
            return True
        except TelegramAPIError as e:
            logger.warning(f"Cannot delete message {message_id} in {chat_id}: {e}")
            return False
