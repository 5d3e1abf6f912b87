from database.connection import Database
from database.models import (
    Base,
    StatusHistory,
    Ticket,
    TicketStatus,
    User,
)

__all__ = [
    "Database",
    "Base",
    "User",
    "Ticket",
    "TicketStatus",
    "StatusHistory",
]
