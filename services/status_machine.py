"""
Машина состояний тикета

Единственная точка записи статуса тикета. Проверяет:
- финальные статусы (после них переходов нет);
- закрепление тикета за первым сотрудником;
- действия, доступные только автору (подтвердить / отменить / переоткрыть);
- обязательный комментарий для resolve и отмены сотрудником.

    pending → in-process → resolved | resolved-with-issues → confirmed
                  ↑___________________________|  (автор: "не решено")
    любой нефинальный → cancelled-staff (сотрудник) | cancelled-user (автор)
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from constants import SYSTEM_ACTOR
from database.models import REMARKS_REQUIRED, RESOLVED_STATUSES, Ticket, TicketStatus
from services.exceptions import (
    AlreadyTerminal,
    InvalidTransition,
    NotAuthorized,
    NotTicketOwner,
    OwnershipConflict,
    PersistenceError,
    RemarksRequired,
    TicketNotFound,
)
from services.permissions import PermissionsManager
from services.ticket_service import TicketDraft, TicketService
from utils.locks import KeyedLock

logger = logging.getLogger(__name__)

S = TicketStatus

STAFF_TRANSITIONS = {
    S.PENDING: {S.IN_PROCESS, S.RESOLVED, S.RESOLVED_WITH_ISSUES, S.CANCELLED_STAFF},
    S.IN_PROCESS: {S.RESOLVED, S.RESOLVED_WITH_ISSUES, S.CANCELLED_STAFF},
    S.RESOLVED: {S.CANCELLED_STAFF},
    S.RESOLVED_WITH_ISSUES: {S.CANCELLED_STAFF},
}

CREATOR_TRANSITIONS = {
    S.PENDING: {S.CANCELLED_USER},
    S.IN_PROCESS: {S.CANCELLED_USER},
    S.RESOLVED: {S.CONFIRMED, S.IN_PROCESS, S.CANCELLED_USER},
    S.RESOLVED_WITH_ISSUES: {S.CONFIRMED, S.IN_PROCESS, S.CANCELLED_USER},
}

SYSTEM_TRANSITIONS = {
    S.RESOLVED: {S.CONFIRMED},
    S.RESOLVED_WITH_ISSUES: {S.CONFIRMED},
}

# Сколько раз перепроверять, если тикет изменился между чтением и записью
MAX_COMMIT_ATTEMPTS = 3
MAX_CREATE_ATTEMPTS = 5


@dataclass
class TransitionResult:
    ticket: Ticket
    old_status: TicketStatus
    new_status: TicketStatus
    actor_id: str
    actor_name: str
    remarks: Optional[str]
    changed: bool

    @property
    def is_reopen(self) -> bool:
        return self.old_status in RESOLVED_STATUSES and self.new_status == S.IN_PROCESS


Listener = Callable[[TransitionResult], Awaitable[None]]


def is_creator_action(ticket: Ticket, new_status: TicketStatus) -> bool:
    """Переход, который может сделать только автор тикета"""
    if new_status in (S.CONFIRMED, S.CANCELLED_USER):
        return True
    return new_status == S.IN_PROCESS and ticket.status in RESOLVED_STATUSES


class StatusStateMachine:
    """Проверка и применение переходов статуса"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        permissions: Optional[PermissionsManager] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.session_factory = session_factory
        self.permissions = permissions
        self.clock = clock
        self._locks = KeyedLock()
        self._create_lock = asyncio.Lock()
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener):
        """Вызывается после каждого фактического изменения статуса"""
        self._listeners.append(listener)

    # ==================== СОЗДАНИЕ ====================

    async def create_ticket(self, draft: TicketDraft) -> Ticket:
        """Создать тикет в статусе pending"""
        async with self._create_lock:
            for attempt in range(MAX_CREATE_ATTEMPTS):
                try:
                    async with self.session_factory() as session:
                        service = TicketService(session)
                        now = self.clock()
                        ticket_id = await service.generate_ticket_id(now)
                        ticket = await service.create_ticket(ticket_id, draft, now)
                except IntegrityError:
                    # ID уже занят (другой процесс) - пересчитываем
                    logger.warning(f"Ticket ID collision (attempt {attempt + 1}/{MAX_CREATE_ATTEMPTS})")
                    continue
                except SQLAlchemyError as e:
                    logger.error(f"Error creating ticket: {e}", exc_info=True)
                    raise PersistenceError() from e

                logger.info(
                    f"Created ticket {ticket.ticket_id} "
                    f"(Branch: {ticket.branch}, Dept: {ticket.department})"
                )
                return ticket

        raise PersistenceError("❌ Could not allocate a ticket ID. Please try again.")

    # ==================== ПЕРЕХОДЫ ====================

    async def transition(
        self,
        ticket_id: str,
        new_status: TicketStatus,
        actor_id: str,
        actor_name: str,
        remarks: Optional[str] = None
    ) -> TransitionResult:
        """
        Сменить статус тикета

        Raises:
            TicketNotFound, AlreadyTerminal, NotTicketOwner, NotAuthorized,
            OwnershipConflict, InvalidTransition, RemarksRequired, PersistenceError
        """
        actor_id = str(actor_id)
        remarks = remarks.strip() if remarks else None

        async with self._locks.hold(ticket_id):
            try:
                result = await self._apply(ticket_id, new_status, actor_id, actor_name, remarks)
            except SQLAlchemyError as e:
                logger.error(f"Error updating {ticket_id}: {e}", exc_info=True)
                raise PersistenceError() from e

        if result.changed:
            logger.info(
                f"Updated {ticket_id}: {result.old_status.value} -> {new_status.value} by {actor_name}"
            )
            await self._notify(result)
        return result

    async def _apply(
        self,
        ticket_id: str,
        new_status: TicketStatus,
        actor_id: str,
        actor_name: str,
        remarks: Optional[str]
    ) -> TransitionResult:
        async with self.session_factory() as session:
            service = TicketService(session)

            for _ in range(MAX_COMMIT_ATTEMPTS):
                ticket = await service.get_ticket(ticket_id)
                if ticket is None:
                    raise TicketNotFound(ticket_id)

                old_status = ticket.status
                assign = self._validate(ticket, new_status, actor_id, remarks)

                if new_status == old_status:
                    return TransitionResult(
                        ticket, old_status, new_status, actor_id, actor_name, remarks, changed=False
                    )

                committed = await service.update_ticket_status(
                    ticket, new_status, actor_id, actor_name, self.clock(),
                    remarks=remarks,
                    assign=assign
                )
                if committed:
                    return TransitionResult(
                        ticket, old_status, new_status, actor_id, actor_name, remarks, changed=True
                    )

                logger.warning(f"Ticket {ticket_id} changed concurrently, re-validating")

        raise PersistenceError(f"❌ Issue {ticket_id} is being updated by someone else. Please try again.")

    def _validate(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        actor_id: str,
        remarks: Optional[str],
        check_remarks: bool = True
    ) -> bool:
        """Проверить переход. Возвращает True, если тикет нужно закрепить за actor_id"""
        current = ticket.status

        if current.is_terminal:
            raise AlreadyTerminal(ticket.ticket_id, current)

        if actor_id == SYSTEM_ACTOR:
            allowed = SYSTEM_TRANSITIONS.get(current, set())
            if new_status != current and new_status not in allowed:
                raise InvalidTransition(ticket.ticket_id, current, new_status)
            return False

        # Автор может подтвердить / отменить / переоткрыть независимо от закрепления
        if is_creator_action(ticket, new_status) or (
            new_status == current == S.IN_PROCESS and actor_id == ticket.creator_id
        ):
            if actor_id != ticket.creator_id:
                raise NotTicketOwner(ticket.ticket_id)
            if new_status != current and new_status not in CREATOR_TRANSITIONS.get(current, set()):
                raise InvalidTransition(ticket.ticket_id, current, new_status)
            return False

        # Действие сотрудника
        if self.permissions is not None and not self.permissions.can_update_status(actor_id):
            raise NotAuthorized()

        if ticket.assigned_to and ticket.assigned_to != actor_id:
            raise OwnershipConflict(ticket.ticket_id, ticket.assigned_to_name)

        if new_status == current:
            return False

        if new_status not in STAFF_TRANSITIONS.get(current, set()):
            raise InvalidTransition(ticket.ticket_id, current, new_status)

        if check_remarks and new_status in REMARKS_REQUIRED and not remarks:
            raise RemarksRequired(ticket.ticket_id, new_status)

        return ticket.assigned_to is None

    async def _notify(self, result: TransitionResult):
        for listener in self._listeners:
            try:
                await listener(result)
            except Exception as e:
                logger.error(
                    f"Status listener failed for {result.ticket.ticket_id}: {e}",
                    exc_info=True
                )

    # ==================== ЧТЕНИЕ ====================

    async def get_ticket(self, ticket_id: str) -> Ticket:
        """Тикет по ID или TicketNotFound"""
        try:
            async with self.session_factory() as session:
                ticket = await TicketService(session).get_ticket(ticket_id)
        except SQLAlchemyError as e:
            raise PersistenceError() from e
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    async def precheck(self, ticket_id: str, new_status: TicketStatus, actor_id: str) -> Ticket:
        """Проверить, что переход возможен (без комментария и без записи)"""
        ticket = await self.get_ticket(ticket_id)
        self._validate(ticket, new_status, str(actor_id), None, check_remarks=False)
        return ticket
