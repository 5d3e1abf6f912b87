"""
Callback data кнопок (лимит Telegram - 64 байта)

    st:<ticket_id>:<code>     - смена статуса сотрудником
    cf:<ticket_id>:yes|no     - подтверждение решения автором
    cancel:<ticket_id>        - отмена тикета автором
"""
from aiogram.filters.callback_data import CallbackData


class StatusCallback(CallbackData, prefix="st"):
    ticket_id: str
    code: str


class ConfirmCallback(CallbackData, prefix="cf"):
    ticket_id: str
    answer: str


class CancelCallback(CallbackData, prefix="cancel"):
    ticket_id: str
