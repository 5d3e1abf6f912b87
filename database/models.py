"""
Модели базы данных
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class TicketStatus(enum.Enum):
    """Статусы тикета"""
    PENDING = "pending"                              # Создан, никто не взял
    IN_PROCESS = "in-process"                        # В работе
    RESOLVED = "resolved"                            # Решён, ждём подтверждения
    RESOLVED_WITH_ISSUES = "resolved-with-issues"    # Решён с замечаниями
    CONFIRMED = "confirmed"                          # Подтверждён автором
    CANCELLED_STAFF = "cancelled-staff"              # Отменён поддержкой
    CANCELLED_USER = "cancelled-user"                # Отменён автором
    CLOSED = "closed"                                # Устаревший статус, только для истории

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self in RESOLVED_STATUSES

    @classmethod
    def parse(cls, value: str) -> Optional["TicketStatus"]:
        """Статус по полному имени или короткому коду"""
        value = value.strip().lower()
        if value in STATUS_CODES:
            return STATUS_CODES[value]
        for status in cls:
            if status.value == value:
                return status
        return None


STATUS_LABELS = {
    TicketStatus.PENDING: "⏳ Pending",
    TicketStatus.IN_PROCESS: "🔧 In Process",
    TicketStatus.RESOLVED: "✅ Resolved",
    TicketStatus.RESOLVED_WITH_ISSUES: "⚠️ Resolved with Issues",
    TicketStatus.CONFIRMED: "✔️ Confirmed",
    TicketStatus.CANCELLED_STAFF: "❌ Cancelled (Staff)",
    TicketStatus.CANCELLED_USER: "❌ Cancelled (User)",
    TicketStatus.CLOSED: "⚫ Closed",
}

TERMINAL_STATUSES = frozenset({
    TicketStatus.CONFIRMED,
    TicketStatus.CANCELLED_STAFF,
    TicketStatus.CANCELLED_USER,
    TicketStatus.CLOSED,
})

RESOLVED_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.RESOLVED_WITH_ISSUES})

CANCELLED_STATUSES = frozenset({TicketStatus.CANCELLED_STAFF, TicketStatus.CANCELLED_USER})

# Требуют комментария от сотрудника
REMARKS_REQUIRED = frozenset({
    TicketStatus.RESOLVED,
    TicketStatus.RESOLVED_WITH_ISSUES,
    TicketStatus.CANCELLED_STAFF,
})

# Короткие коды для callback_data (лимит 64 байта)
STATUS_CODES = {
    "ip": TicketStatus.IN_PROCESS,
    "rv": TicketStatus.RESOLVED,
    "rwi": TicketStatus.RESOLVED_WITH_ISSUES,
    "cs": TicketStatus.CANCELLED_STAFF,
    "cu": TicketStatus.CANCELLED_USER,
}


class User(Base):
    """Модель пользователя (реестр всех, кто писал боту)"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255))
    chat_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    role: Mapped[str] = mapped_column(String(20), default="employee")
    message_count: Mapped[int] = mapped_column(Integer, default=1)
    first_seen: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    last_seen: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Ticket(Base):
    """Модель тикета"""
    __tablename__ = "tickets"

    ticket_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    # Автор
    creator_id: Mapped[str] = mapped_column(String(64), index=True)
    creator_name: Mapped[str] = mapped_column(String(255))

    # Содержимое (branch - ключ маршрутизации, department - только для информации)
    branch: Mapped[str] = mapped_column(String(32), index=True)
    department: Mapped[str] = mapped_column(String(64))
    category: Mapped[str] = mapped_column(String(64))
    urgency: Mapped[str] = mapped_column(String(20))
    description: Mapped[str] = mapped_column(Text)
    contact_person: Mapped[str] = mapped_column(String(255))

    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus),
        default=TicketStatus.PENDING,
        index=True
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Сотрудник, который первым взял тикет
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    assigned_to_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Временные метки
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    history: Mapped[list["StatusHistory"]] = relationship(
        "StatusHistory",
        back_populates="ticket",
        order_by="StatusHistory.id"
    )


class StatusHistory(Base):
    """История смены статусов (только добавление)"""
    __tablename__ = "status_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.ticket_id"), index=True)
    from_status: Mapped[Optional[TicketStatus]] = mapped_column(Enum(TicketStatus), nullable=True)
    to_status: Mapped[TicketStatus] = mapped_column(Enum(TicketStatus))
    actor_id: Mapped[str] = mapped_column(String(64))
    actor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="history")
