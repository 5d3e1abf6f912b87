"""
Клавиатуры для сотрудников поддержки (групповой чат)
"""
from typing import Optional

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from database.models import TicketStatus
from keyboards.callbacks import StatusCallback


class StaffKeyboards:
    """Кнопки статуса под карточкой тикета"""

    @staticmethod
    def status_buttons(ticket_id: str, status: TicketStatus) -> Optional[InlineKeyboardMarkup]:
        """
        Кнопки, допустимые для текущего статуса

        pending    - взять в работу / отменить
        in-process - решено / решено с замечаниями / отменить
        остальные  - без кнопок (решение за автором)
        """
        if status == TicketStatus.PENDING:
            buttons = [[
                InlineKeyboardButton(
                    text="🔧 In Process",
                    callback_data=StatusCallback(ticket_id=ticket_id, code="ip").pack()
                ),
                InlineKeyboardButton(
                    text="❌ Cancel (Staff)",
                    callback_data=StatusCallback(ticket_id=ticket_id, code="cs").pack()
                )
            ]]
        elif status == TicketStatus.IN_PROCESS:
            buttons = [
                [
                    InlineKeyboardButton(
                        text="✅ Resolved",
                        callback_data=StatusCallback(ticket_id=ticket_id, code="rv").pack()
                    ),
                    InlineKeyboardButton(
                        text="⚠️ Resolved w/ Issues",
                        callback_data=StatusCallback(ticket_id=ticket_id, code="rwi").pack()
                    )
                ],
                [InlineKeyboardButton(
                    text="❌ Cancel (Staff)",
                    callback_data=StatusCallback(ticket_id=ticket_id, code="cs").pack()
                )]
            ]
        else:
            return None

        return InlineKeyboardMarkup(inline_keyboard=buttons)
