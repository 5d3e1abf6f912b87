"""
Middleware: реестр пользователей

Каждое сообщение и нажатие кнопки обновляет запись в таблице users
(имя, username, роль, счётчик сообщений, время последней активности).
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.enums import ChatType
from aiogram.types import Chat, TelegramObject, User as TelegramUser
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.permissions import PermissionsManager
from services.ticket_service import TicketService

logger = logging.getLogger(__name__)


class UserRegistryMiddleware(BaseMiddleware):
    """Регистрирует отправителя до вызова обработчика"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        permissions: PermissionsManager,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.session_factory = session_factory
        self.permissions = permissions
        self.clock = clock

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        user: TelegramUser | None = data.get("event_from_user")
        chat: Chat | None = data.get("event_chat")

        if user is not None and not user.is_bot:
            await self.register(user, chat)

        return await handler(event, data)

    async def register(self, user: TelegramUser, chat: Chat | None):
        # chat_id сохраняем только из личного чата - туда бот пишет автору
        chat_id = chat.id if chat is not None and chat.type == ChatType.PRIVATE else None
        role = "support" if self.permissions.is_support_staff(user.id) else "employee"

        try:
            async with self.session_factory() as session:
                _, is_new = await TicketService(session).get_or_create_user(
                    telegram_id=user.id,
                    now=self.clock(),
                    username=user.username,
                    full_name=user.full_name,
                    chat_id=chat_id,
                    role=role
                )
        except Exception as e:
            logger.error(f"Failed to register user {user.id}: {e}", exc_info=True)
            return

        if is_new:
            logger.info(f"New user registered: {user.full_name} ({user.id}) as {role}")
