"""
Шаги мастера создания тикета
"""
from typing import Optional

from aiogram.fsm.state import State, StatesGroup


class TicketForm(StatesGroup):
    """
    Шаги мастера создания тикета (строго по порядку)

    BRANCH → DEPARTMENT → CATEGORY → URGENCY → DESCRIPTION → CONTACT → CONFIRMATION

    Назад вернуться нельзя - только /cancel и начать заново.
    """

    # Филиал - ключ маршрутизации
    BRANCH = State()

    # Отдел - только для информации
    DEPARTMENT = State()

    CATEGORY = State()

    URGENCY = State()

    # Свободный текст
    DESCRIPTION = State()

    # Контактное лицо ("ME" - сам автор)
    CONTACT = State()

    # Да / Нет
    CONFIRMATION = State()


def next_step(step: State) -> Optional[State]:
    """Следующий шаг мастера или None после CONFIRMATION"""
    steps = TicketForm.__all_states__
    index = steps.index(step)
    return steps[index + 1] if index + 1 < len(steps) else None
