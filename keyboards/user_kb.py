"""
Клавиатуры для пользователя
"""
from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
)

from constants import CATEGORIES, CONFIRM_NO, CONFIRM_YES, CONTACT_SELF, DEPARTMENTS, URGENCY_LEVELS
from keyboards.callbacks import CancelCallback, ConfirmCallback


def _rows(options: list[str], per_row: int = 2) -> list[list[KeyboardButton]]:
    return [
        [KeyboardButton(text=option) for option in options[i:i + per_row]]
        for i in range(0, len(options), per_row)
    ]


class UserKeyboards:
    """Клавиатуры для пользователя"""

    @staticmethod
    def choices(options: list[str], per_row: int = 2) -> ReplyKeyboardMarkup:
        """Варианты ответа на шаге мастера"""
        return ReplyKeyboardMarkup(
            keyboard=_rows(options, per_row),
            resize_keyboard=True,
            one_time_keyboard=True
        )

    @staticmethod
    def branches(branches: list[str]) -> ReplyKeyboardMarkup:
        return UserKeyboards.choices(branches, per_row=4)

    @staticmethod
    def departments() -> ReplyKeyboardMarkup:
        return UserKeyboards.choices(DEPARTMENTS)

    @staticmethod
    def categories() -> ReplyKeyboardMarkup:
        return UserKeyboards.choices(CATEGORIES)

    @staticmethod
    def urgency() -> ReplyKeyboardMarkup:
        return UserKeyboards.choices(URGENCY_LEVELS, per_row=4)

    @staticmethod
    def contact() -> ReplyKeyboardMarkup:
        return UserKeyboards.choices([CONTACT_SELF], per_row=1)

    @staticmethod
    def confirmation() -> ReplyKeyboardMarkup:
        """Подтверждение создания"""
        return UserKeyboards.choices([CONFIRM_YES, CONFIRM_NO])

    @staticmethod
    def remove() -> ReplyKeyboardRemove:
        return ReplyKeyboardRemove()

    @staticmethod
    def cancel_ticket(ticket_id: str) -> InlineKeyboardMarkup:
        """Отмена тикета автором"""
        return InlineKeyboardMarkup(inline_keyboard=[
            [InlineKeyboardButton(
                text="❌ Cancel This Ticket",
                callback_data=CancelCallback(ticket_id=ticket_id).pack()
            )]
        ])

    @staticmethod
    def confirm_resolution(ticket_id: str) -> InlineKeyboardMarkup:
        """Подтверждение решения"""
        return InlineKeyboardMarkup(inline_keyboard=[
            [
                InlineKeyboardButton(
                    text="✅ Confirm Resolved",
                    callback_data=ConfirmCallback(ticket_id=ticket_id, answer="yes").pack()
                ),
                InlineKeyboardButton(
                    text="❌ Not Resolved",
                    callback_data=ConfirmCallback(ticket_id=ticket_id, answer="no").pack()
                )
            ]
        ])
