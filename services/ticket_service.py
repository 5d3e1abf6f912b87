"""
Сервис для работы с тикетами (хранилище)

Только чтение/запись. Правила смены статусов - в StatusStateMachine,
это единственный код, который вызывает update_ticket_status.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from constants import SYSTEM_ACTOR
from database.models import RESOLVED_STATUSES, StatusHistory, Ticket, TicketStatus, User


@dataclass
class TicketDraft:
    """Поля, собранные мастером создания тикета"""
    creator_id: str
    creator_name: str
    branch: str
    department: str
    category: str
    urgency: str
    description: str
    contact_person: str


@dataclass
class TicketFilter:
    """Фильтр для query_tickets"""
    statuses: Optional[Iterable[TicketStatus]] = None
    creator_id: Optional[str] = None
    branch: Optional[str] = None
    department: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    updated_before: Optional[datetime] = None
    limit: Optional[int] = None


class TicketService:
    """Сервис для работы с тикетами"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== ПОЛЬЗОВАТЕЛИ ====================

    async def get_or_create_user(
        self,
        telegram_id: int,
        now: datetime,
        username: Optional[str] = None,
        full_name: str = "Unknown",
        chat_id: Optional[int] = None,
        role: str = "employee"
    ) -> tuple[User, bool]:
        """Получить или создать пользователя. Возвращает (user, is_new)"""
        user = await self.get_user_by_telegram_id(telegram_id)

        if user is None:
            user = User(
                telegram_id=telegram_id,
                username=username,
                full_name=full_name,
                chat_id=chat_id,
                role=role,
                message_count=1,
                first_seen=now,
                last_seen=now
            )
            self.session.add(user)
            await self.session.commit()
            await self.session.refresh(user)
            return user, True

        user.username = username
        user.full_name = full_name
        user.role = role
        if chat_id is not None:
            user.chat_id = chat_id
        user.last_seen = now
        user.message_count += 1
        await self.session.commit()
        return user, False

    async def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Получить пользователя по telegram_id"""
        result = await self.session.execute(
            select(User).where(User.telegram_id == telegram_id)
        )
        return result.scalar_one_or_none()

    async def list_users(self, limit: int = 50) -> list[User]:
        """Все пользователи, последние активные первыми"""
        result = await self.session.execute(
            select(User).order_by(User.last_seen.desc()).limit(limit)
        )
        return list(result.scalars().all())

    # ==================== ТИКЕТЫ ====================

    async def generate_ticket_id(self, now: datetime) -> str:
        """Следующий ID вида ISSUE-YYYYMMDD-NNNN (счётчик в пределах дня)"""
        prefix = f"ISSUE-{now:%Y%m%d}-"
        result = await self.session.execute(
            select(func.count(Ticket.ticket_id))
            .where(Ticket.ticket_id.like(f"{prefix}%"))
        )
        count = result.scalar() or 0
        return f"{prefix}{count + 1:04d}"

    async def create_ticket(self, ticket_id: str, draft: TicketDraft, now: datetime) -> Ticket:
        """Создать тикет в статусе pending вместе с первой записью истории"""
        ticket = Ticket(
            ticket_id=ticket_id,
            creator_id=draft.creator_id,
            creator_name=draft.creator_name,
            branch=draft.branch,
            department=draft.department,
            category=draft.category,
            urgency=draft.urgency,
            description=draft.description,
            contact_person=draft.contact_person or draft.creator_name,
            status=TicketStatus.PENDING,
            created_at=now,
            updated_at=now
        )
        self.session.add(ticket)
        await self.append_history(
            ticket_id, None, TicketStatus.PENDING, SYSTEM_ACTOR, "System", None, now,
            commit=False
        )
        await self.session.commit()
        await self.session.refresh(ticket)
        return ticket

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """Получить тикет по ID"""
        result = await self.session.execute(
            select(Ticket).where(Ticket.ticket_id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def update_ticket_status(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        actor_id: str,
        actor_name: str,
        now: datetime,
        remarks: Optional[str] = None,
        assign: bool = False
    ) -> bool:
        """
        Обновить статус тикета и записать историю одной транзакцией

        UPDATE выполняется только если статус в БД всё ещё равен
        ticket.status. Возвращает False, если тикет успел измениться.
        """
        old_status = ticket.status
        values = {"status": new_status, "updated_at": now}
        if remarks:
            values["remarks"] = remarks
        if new_status in RESOLVED_STATUSES:
            values["resolved_at"] = now
        if assign:
            values["assigned_to"] = actor_id
            values["assigned_to_name"] = actor_name

        result = await self.session.execute(
            update(Ticket)
            .where(Ticket.ticket_id == ticket.ticket_id, Ticket.status == old_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            return False

        await self.append_history(
            ticket.ticket_id, old_status, new_status, actor_id, actor_name, remarks, now,
            commit=False
        )
        await self.session.commit()
        await self.session.refresh(ticket)
        return True

    # ==================== ИСТОРИЯ ====================

    async def append_history(
        self,
        ticket_id: str,
        from_status: Optional[TicketStatus],
        to_status: TicketStatus,
        actor_id: str,
        actor_name: Optional[str],
        remarks: Optional[str],
        at: datetime,
        commit: bool = True
    ) -> StatusHistory:
        """Добавить запись в историю статусов"""
        entry = StatusHistory(
            ticket_id=ticket_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            actor_name=actor_name,
            remarks=remarks,
            at=at
        )
        self.session.add(entry)
        if commit:
            await self.session.commit()
        else:
            await self.session.flush()
        return entry

    async def get_status_history(self, ticket_id: str) -> list[StatusHistory]:
        """История статусов тикета в порядке записи"""
        result = await self.session.execute(
            select(StatusHistory)
            .where(StatusHistory.ticket_id == ticket_id)
            .order_by(StatusHistory.at.asc(), StatusHistory.id.asc())
        )
        return list(result.scalars().all())

    # ==================== ФИЛЬТРЫ ====================

    async def query_tickets(self, filters: Optional[TicketFilter] = None) -> list[Ticket]:
        """Тикеты по фильтру, новые первыми"""
        filters = filters or TicketFilter()
        query = select(Ticket)

        if filters.statuses is not None:
            query = query.where(Ticket.status.in_(list(filters.statuses)))
        if filters.creator_id is not None:
            query = query.where(Ticket.creator_id == filters.creator_id)
        if filters.branch is not None:
            query = query.where(Ticket.branch == filters.branch)
        if filters.department is not None:
            query = query.where(Ticket.department == filters.department)
        if filters.created_from is not None:
            query = query.where(Ticket.created_at >= filters.created_from)
        if filters.created_to is not None:
            query = query.where(Ticket.created_at < filters.created_to)
        if filters.updated_before is not None:
            query = query.where(Ticket.updated_at <= filters.updated_before)

        query = query.order_by(Ticket.created_at.desc(), Ticket.ticket_id.desc())
        if filters.limit:
            query = query.limit(filters.limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_unconfirmed_resolved(self, updated_before: datetime) -> list[Ticket]:
        """Решённые, но не подтверждённые тикеты, не менявшиеся с updated_before"""
        return await self.query_tickets(TicketFilter(
            statuses=RESOLVED_STATUSES,
            updated_before=updated_before
        ))

    # ==================== СТАТИСТИКА ====================

    async def get_staff_activity(self, since: datetime) -> list[dict]:
        """Действия сотрудников с момента since (без системных), самые результативные первыми"""
        resolved = func.sum(case((StatusHistory.to_status.in_(list(RESOLVED_STATUSES)), 1), else_=0))
        total = func.count(StatusHistory.id)

        result = await self.session.execute(
            select(
                StatusHistory.actor_id,
                StatusHistory.actor_name,
                total.label("total_actions"),
                resolved.label("resolved"),
                func.sum(case((StatusHistory.to_status == TicketStatus.IN_PROCESS, 1), else_=0))
                .label("in_process"),
                func.sum(case((StatusHistory.to_status == TicketStatus.CANCELLED_STAFF, 1), else_=0))
                .label("cancelled")
            )
            .where(StatusHistory.at >= since, StatusHistory.actor_id != SYSTEM_ACTOR)
            .group_by(StatusHistory.actor_id, StatusHistory.actor_name)
            .order_by(resolved.desc(), total.desc())
        )
        return [
            {
                "actor_id": row.actor_id,
                "actor_name": row.actor_name,
                "total_actions": row.total_actions or 0,
                "resolved": row.resolved or 0,
                "in_process": row.in_process or 0,
                "cancelled": row.cancelled or 0,
            }
            for row in result.all()
        ]
