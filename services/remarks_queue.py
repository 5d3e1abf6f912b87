"""
Очередь ожидающих комментариев

Сотрудник нажал "Resolved" / "Cancel" - статус не меняется сразу:
бот ждёт текст комментария. Нажатия копятся в FIFO-очереди
по ключу (chat_id, actor_id); каждый следующий текст сотрудника
в этом чате применяется к самой старой записи.
"""
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Deque, Dict, List, Optional, Tuple

from aiogram.exceptions import TelegramAPIError
from aiogram.utils.text_decorations import html_decoration as hd

from database.models import TicketStatus
from services.exceptions import (
    AlreadyTerminal,
    HelpdeskError,
    InvalidTransition,
    NotAuthorized,
    OwnershipConflict,
    TicketNotFound,
)
from services.status_machine import StatusStateMachine, TransitionResult
from utils.locks import KeyedLock
from utils.texts import status_line, ticket_card

if TYPE_CHECKING:
    from services.transport import TelegramTransport

logger = logging.getLogger(__name__)

QueueKey = Tuple[str, str]

# После этих ошибок запись применить уже нельзя - она удаляется
UNAPPLIABLE_ERRORS = (AlreadyTerminal, NotAuthorized, OwnershipConflict, TicketNotFound, InvalidTransition)


@dataclass
class PendingRemarksEntry:
    ticket_id: str
    requested_status: TicketStatus
    card_message_id: Optional[int]
    prior_status: TicketStatus
    is_cancellation: bool
    queued_at: datetime
    description: str = ""


@dataclass
class RemarksOutcome:
    """Результат обработки текста сотрудника"""
    entry: PendingRemarksEntry
    applied: bool
    result: Optional[TransitionResult] = None
    error: Optional[str] = None
    remaining: int = 0


class RemarksQueueCoordinator:
    """FIFO-очереди комментариев по (chat_id, actor_id)"""

    def __init__(
        self,
        machine: StatusStateMachine,
        transport: "TelegramTransport",
        max_age: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = datetime.now
    ):
        self.machine = machine
        self.transport = transport
        self.max_age = max_age
        self.clock = clock
        self._queues: Dict[QueueKey, Deque[PendingRemarksEntry]] = {}
        self._locks = KeyedLock()

    @staticmethod
    def _key(chat_id, actor_id) -> QueueKey:
        return str(chat_id), str(actor_id)

    def pending(self, chat_id, actor_id) -> List[PendingRemarksEntry]:
        """Копия очереди"""
        return list(self._queues.get(self._key(chat_id, actor_id), ()))

    def has_pending(self, chat_id, actor_id) -> bool:
        return bool(self._queues.get(self._key(chat_id, actor_id)))

    # ==================== ПОДСКАЗКИ ====================

    def _prompt_text(self, entry: PendingRemarksEntry, actor_name: str) -> str:
        if entry.is_cancellation:
            title = "📝 <b>CANCELLATION REASON REQUIRED</b>"
            action = "please REPLY to this message with the reason for cancelling this ticket."
        else:
            title = "📝 <b>REMARKS REQUIRED</b>"
            action = (
                "please REPLY to this message with your remarks "
                "describing what was done to resolve this issue."
            )
        return (
            f"{title}\n\n"
            f"📋 Issue: <code>{entry.ticket_id}</code>\n"
            f"📊 New status: {entry.requested_status.label}\n\n"
            f"📄 Subject:\n{hd.quote(entry.description or 'N/A')}\n\n"
            f"{hd.quote(actor_name)}, {action}\n\n"
            f"💡 Type /cancel_remarks to skip"
        )

    async def _say(self, chat_id, text: str):
        try:
            await self.transport.send_direct(chat_id, text)
        except TelegramAPIError as e:
            logger.error(f"Failed to send remarks message to {chat_id}: {e}")

    async def _prompt_next(self, chat_id, actor_name: str, key: QueueKey):
        queue = self._queues.get(key)
        if queue:
            await self._say(chat_id, self._prompt_text(queue[0], actor_name))

    def _discard(self, key: QueueKey, entry: PendingRemarksEntry) -> int:
        """Убрать запись (если sweep не успел раньше). Возвращает остаток очереди"""
        queue = self._queues.get(key)
        if queue is None:
            return 0
        for i, queued in enumerate(queue):
            if queued is entry:
                del queue[i]
                break
        if not queue:
            del self._queues[key]
        return len(queue)

    # ==================== ОПЕРАЦИИ ====================

    async def enqueue(self, chat_id, actor_id, actor_name: str, entry: PendingRemarksEntry) -> int:
        """Поставить в очередь. Возвращает длину очереди"""
        key = self._key(chat_id, actor_id)
        async with self._locks.hold(key):
            queue = self._queues.setdefault(key, deque())

            duplicate = any(
                e.ticket_id == entry.ticket_id and e.requested_status == entry.requested_status
                for e in queue
            )
            if duplicate:
                logger.info(f"Remarks for {entry.ticket_id} already queued for {key}")
                return len(queue)

            queue.append(entry)
            logger.info(f"Queued remarks for {entry.ticket_id} ({len(queue)} pending for {key})")

            if len(queue) == 1:
                await self._say(chat_id, self._prompt_text(entry, actor_name))
            else:
                await self._say(
                    chat_id,
                    f"📝 Queued: <code>{entry.ticket_id}</code> ({len(queue)} tickets awaiting remarks)\n\n"
                    f"Finish remarks for <code>{queue[0].ticket_id}</code> first, then this one will be next."
                )
            return len(queue)

    async def resolve(self, chat_id, actor_id, actor_name: str, text: str) -> Optional[RemarksOutcome]:
        """
        Применить текст как комментарий к самой старой записи

        None - очередь пуста (текст не для нас).
        """
        key = self._key(chat_id, actor_id)
        async with self._locks.hold(key):
            queue = self._queues.get(key)
            if not queue:
                return None

            entry = queue[0]
            remarks = (text or "").strip()
            if not remarks:
                error = "📝 Remarks cannot be empty."
                await self._say(chat_id, error)
                return RemarksOutcome(entry, applied=False, error=error, remaining=len(queue))

            try:
                result = await self.machine.transition(
                    entry.ticket_id,
                    entry.requested_status,
                    actor_id,
                    actor_name,
                    remarks=remarks
                )
            except UNAPPLIABLE_ERRORS as e:
                remaining = self._discard(key, entry)
                logger.info(f"Dropped remarks entry for {entry.ticket_id}: {e.message}")
                await self._say(chat_id, e.message)
                await self._prompt_next(chat_id, actor_name, key)
                return RemarksOutcome(entry, applied=False, error=e.message, remaining=remaining)
            except HelpdeskError as e:
                # PersistenceError и т.п. - запись остаётся, можно повторить
                await self._say(chat_id, e.message)
                return RemarksOutcome(entry, applied=False, error=e.message, remaining=len(queue))

            remaining = self._discard(key, entry)

            await self._say(
                chat_id,
                f"✅ <b>STATUS UPDATED</b>\n\n"
                f"📋 Issue: <code>{entry.ticket_id}</code>\n"
                f"📊 Status: {status_line(result.old_status, result.new_status)}\n"
                f"👤 Updated by: {hd.quote(actor_name)}\n\n"
                f"📝 {'Reason' if entry.is_cancellation else 'Remarks'}:\n{hd.quote(remarks)}"
            )
            if entry.card_message_id is not None:
                await self.transport.edit_message(
                    chat_id, entry.card_message_id, ticket_card(result.ticket, actor_name, remarks)
                )

            await self._prompt_next(chat_id, actor_name, key)
            return RemarksOutcome(entry, applied=True, result=result, remaining=remaining)

    async def cancel(self, chat_id, actor_id, actor_name: str = "") -> Optional[PendingRemarksEntry]:
        """Снять самую старую запись без применения"""
        key = self._key(chat_id, actor_id)
        async with self._locks.hold(key):
            queue = self._queues.get(key)
            if not queue:
                return None

            entry = queue.popleft()
            if not queue:
                del self._queues[key]
            await self._say(
                chat_id,
                f"❌ Remarks for <code>{entry.ticket_id}</code> cancelled. Status was not updated."
            )
            await self._prompt_next(chat_id, actor_name, key)
            return entry

    def sweep(self, max_age: Optional[timedelta] = None) -> int:
        """Удалить записи старше max_age. Возвращает количество удалённых"""
        max_age = self.max_age if max_age is None else max_age
        now = self.clock()
        removed = 0

        for key in list(self._queues):
            queue = self._queues[key]
            fresh = [e for e in queue if now - e.queued_at <= max_age]
            removed += len(queue) - len(fresh)
            if fresh:
                queue.clear()
                queue.extend(fresh)
            else:
                del self._queues[key]

        if removed:
            logger.info(f"Cleaned up {removed} stale pending remarks")
        return removed

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())
