"""
Хранилище диалогов мастера создания тикета

Диалоги живут только в памяти: после перезапуска пользователь
просто начинает заново. Все методы синхронные и не уступают
управление event loop, поэтому каждый из них атомарен.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from aiogram.fsm.state import State

from services.exceptions import NoActiveConversation
from states import TicketForm

logger = logging.getLogger(__name__)


@dataclass
class Conversation:
    user_id: str
    display_name: str
    current_step: State
    started_at: datetime
    last_activity_at: datetime
    collected_fields: Dict[str, Any] = field(default_factory=dict)


class ConversationStore:
    """Один активный диалог на пользователя, с таймаутом бездействия"""

    def __init__(
        self,
        timeout: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = datetime.now
    ):
        self.timeout = timeout
        self.clock = clock
        self._conversations: Dict[str, Conversation] = {}

    def _is_expired(self, conversation: Conversation, now: datetime) -> bool:
        return now - conversation.last_activity_at > self.timeout

    def start(self, user_id: str, display_name: str) -> Conversation:
        """Начать диалог; если живой диалог уже есть - вернуть его без изменений"""
        existing = self.get(user_id)
        if existing is not None:
            return existing

        now = self.clock()
        conversation = Conversation(
            user_id=user_id,
            display_name=display_name or "Unknown User",
            current_step=TicketForm.BRANCH,
            started_at=now,
            last_activity_at=now
        )
        self._conversations[user_id] = conversation
        logger.info(f"Started conversation for user {user_id}")
        return conversation

    def get(self, user_id: str) -> Optional[Conversation]:
        """Живой диалог или None (просроченный удаляется)"""
        conversation = self._conversations.get(user_id)
        if conversation is None:
            return None

        if self._is_expired(conversation, self.clock()):
            logger.info(f"Conversation timeout for user {user_id}")
            del self._conversations[user_id]
            return None

        return conversation

    def advance(self, user_id: str, field_name: str, value: Any, next_step: State) -> Conversation:
        """Сохранить ответ и перейти к следующему шагу"""
        conversation = self.get(user_id)
        if conversation is None:
            raise NoActiveConversation()

        conversation.collected_fields[field_name] = value
        conversation.current_step = next_step
        conversation.last_activity_at = self.clock()
        logger.debug(f"Updated {field_name} for {user_id}, moving to {next_step.state}")
        return conversation

    def end(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Удалить диалог и вернуть собранные поля"""
        conversation = self._conversations.pop(user_id, None)
        if conversation is None:
            return None
        logger.info(f"Ending conversation for user {user_id}")
        return conversation.collected_fields

    def sweep(self) -> int:
        """Удалить все просроченные диалоги"""
        now = self.clock()
        expired = [
            user_id for user_id, conversation in self._conversations.items()
            if self._is_expired(conversation, now)
        ]
        for user_id in expired:
            del self._conversations[user_id]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired conversations")
        return len(expired)

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, user_id: str) -> bool:
        return self.get(user_id) is not None
