"""
Мастер создания тикета (личные сообщения)

Каждый ответ пользователя проверяется по списку допустимых значений
текущего шага. Неверный ответ - диалог не меняется, вопрос повторяется.
"""
import logging
import re
from typing import TYPE_CHECKING, Iterable, Optional

from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.state import State
from aiogram.utils.text_decorations import html_decoration as hd

from constants import CATEGORIES, CONFIRM_NO, CONFIRM_YES, CONTACT_SELF, DEPARTMENTS, URGENCY_LEVELS
from database.models import Ticket
from keyboards import UserKeyboards
from services.conversation_store import Conversation, ConversationStore
from services.exceptions import NoActiveConversation, PersistenceError
from services.permissions import PermissionsManager
from services.status_machine import StatusStateMachine
from services.ticket_service import TicketDraft
from states import TicketForm, next_step
from utils.locks import KeyedLock
from utils.texts import submitted_message

if TYPE_CHECKING:
    from services.routing import RoutingEngine
    from services.transport import TelegramTransport

logger = logging.getLogger(__name__)

YES_PATTERN = re.compile(r"\byes\b", re.IGNORECASE)
NO_PATTERN = re.compile(r"\bno\b", re.IGNORECASE)

# Поле, в которое сохраняется ответ на каждом шаге
STEP_FIELDS = {
    TicketForm.BRANCH.state: "branch",
    TicketForm.DEPARTMENT.state: "department",
    TicketForm.CATEGORY.state: "category",
    TicketForm.URGENCY.state: "urgency",
    TicketForm.DESCRIPTION.state: "description",
    TicketForm.CONTACT.state: "contact_person",
}


def parse_confirmation(text: str) -> Optional[bool]:
    """True - да, False - нет, None - непонятно"""
    if text == CONFIRM_YES:
        return True
    if text == CONFIRM_NO:
        return False
    is_yes = bool(YES_PATTERN.search(text))
    is_no = bool(NO_PATTERN.search(text))
    if is_yes == is_no:
        return None
    return is_yes


class TicketWizard:
    """Пошаговый сбор полей тикета"""

    def __init__(
        self,
        conversations: ConversationStore,
        machine: StatusStateMachine,
        routing: "RoutingEngine",
        transport: "TelegramTransport",
        permissions: PermissionsManager,
        branches: Iterable[str]
    ):
        self.conversations = conversations
        self.machine = machine
        self.routing = routing
        self.transport = transport
        self.permissions = permissions
        self.branches = list(branches)
        self._locks = KeyedLock()

    # ==================== ВОПРОСЫ ====================

    async def _ask(self, chat_id, step: State, conversation: Conversation):
        if step == TicketForm.BRANCH:
            await self.transport.send_keyboard(
                chat_id,
                "🏢 <b>Welcome to the Helpdesk Bot!</b>\n\nWhich branch/company are you from?",
                UserKeyboards.branches(self.branches)
            )
        elif step == TicketForm.DEPARTMENT:
            await self.transport.send_keyboard(
                chat_id, "📂 Please select your department:", UserKeyboards.departments()
            )
        elif step == TicketForm.CATEGORY:
            await self.transport.send_keyboard(
                chat_id, "🔧 Please select the issue category:", UserKeyboards.categories()
            )
        elif step == TicketForm.URGENCY:
            await self.transport.send_keyboard(
                chat_id, "⚠️ Please select the urgency level:", UserKeyboards.urgency()
            )
        elif step == TicketForm.DESCRIPTION:
            await self.transport.send_keyboard(
                chat_id,
                "📝 Please describe the issue in detail:\n\n(Type your description and send)",
                UserKeyboards.remove()
            )
        elif step == TicketForm.CONTACT:
            await self.transport.send_keyboard(
                chat_id,
                f"📞 Who should we contact regarding this issue?\n\n"
                f"(Enter name and contact info, or type \"{CONTACT_SELF}\" to use your info)",
                UserKeyboards.contact()
            )
        elif step == TicketForm.CONFIRMATION:
            data = conversation.collected_fields
            await self.transport.send_keyboard(
                chat_id,
                f"📋 <b>ISSUE SUMMARY</b>\n\n"
                f"🏢 Branch: {hd.quote(data['branch'])}\n"
                f"Department: {hd.quote(data['department'])}\n"
                f"Category: {hd.quote(data['category'])}\n"
                f"⚠️ Urgency: {hd.quote(data['urgency'])}\n"
                f"Contact: {hd.quote(data['contact_person'])}\n\n"
                f"📝 Description:\n{hd.quote(data['description'])}\n\n"
                f"Is this correct?",
                UserKeyboards.confirmation()
            )

    def _validate(self, step: State, text: str, conversation: Conversation) -> Optional[str]:
        """Нормализованный ответ или None, если ответ не подходит"""
        if step == TicketForm.BRANCH:
            branch = text.upper()
            return branch if branch in self.branches else None
        if step == TicketForm.DEPARTMENT:
            return text if text in DEPARTMENTS else None
        if step == TicketForm.CATEGORY:
            return text if text in CATEGORIES else None
        if step == TicketForm.URGENCY:
            return text if text in URGENCY_LEVELS else None
        if step == TicketForm.DESCRIPTION:
            return text or None
        if step == TicketForm.CONTACT:
            if not text:
                return None
            return conversation.display_name if text.upper() == CONTACT_SELF else text
        return None

    @staticmethod
    def _invalid_text(step: State, text: str) -> str:
        if step == TicketForm.DESCRIPTION:
            return "❌ Description cannot be empty. Please describe the issue:"
        if step == TicketForm.CONTACT:
            return f"❌ Please enter a contact person or type \"{CONTACT_SELF}\"."
        what = STEP_FIELDS[step.state].replace("_", " ")
        return (
            f"❌ Invalid selection: \"{hd.quote(text)}\"\n\n"
            f"Please use the keyboard buttons to select your {what}."
        )

    # ==================== ДИАЛОГ ====================

    async def _begin(self, user_id: str, chat_id, display_name: str):
        self.permissions.require(user_id, "create")
        conversation = self.conversations.start(user_id, display_name)
        await self._ask(chat_id, TicketForm.BRANCH, conversation)

    async def start(self, user_id, chat_id, display_name: str):
        """/start - начать диалог или повторить текущий вопрос"""
        user_id = str(user_id)
        async with self._locks.hold(user_id):
            conversation = self.conversations.get(user_id)
            if conversation is None:
                await self._begin(user_id, chat_id, display_name)
            else:
                await self._ask(chat_id, conversation.current_step, conversation)

    async def handle_message(self, user_id, chat_id, display_name: str, text: str) -> Optional[Ticket]:
        """
        Обработать сообщение пользователя

        Нет диалога - начинается новый. Возвращает тикет, если он был создан.
        """
        user_id = str(user_id)
        async with self._locks.hold(user_id):
            conversation = self.conversations.get(user_id)

            if conversation is None:
                await self._begin(user_id, chat_id, display_name)
                return None

            text = (text or "").strip()
            step = conversation.current_step

            if step == TicketForm.CONFIRMATION:
                return await self._confirm(user_id, chat_id, text, conversation)

            value = self._validate(step, text, conversation)
            if value is None:
                await self.transport.send_direct(chat_id, self._invalid_text(step, text))
                return None

            following = next_step(step)
            conversation = self.conversations.advance(user_id, STEP_FIELDS[step.state], value, following)
            await self._ask(chat_id, following, conversation)
            return None

    async def _confirm(self, user_id: str, chat_id, text: str, conversation: Conversation) -> Optional[Ticket]:
        answer = parse_confirmation(text)

        if answer is None:
            await self.transport.send_direct(
                chat_id, f"Please click one of the buttons: {CONFIRM_YES} or {CONFIRM_NO}"
            )
            return None

        if not answer:
            self.conversations.end(user_id)
            await self.transport.send_keyboard(
                chat_id,
                "❌ Issue creation cancelled.\n\nSend any message to start a new issue.",
                UserKeyboards.remove()
            )
            return None

        return await self._submit(user_id, chat_id, conversation)

    async def _submit(self, user_id: str, chat_id, conversation: Conversation) -> Optional[Ticket]:
        data = conversation.collected_fields
        draft = TicketDraft(
            creator_id=user_id,
            creator_name=conversation.display_name,
            branch=data["branch"],
            department=data["department"],
            category=data["category"],
            urgency=data["urgency"],
            description=data["description"],
            contact_person=data["contact_person"]
        )

        try:
            ticket = await self.machine.create_ticket(draft)
        except PersistenceError as e:
            # Диалог остаётся на CONFIRMATION - можно повторить "Yes"
            await self.transport.send_direct(chat_id, e.message)
            return None

        if self.conversations.end(user_id) is None:
            logger.warning(f"Conversation of {user_id} expired during submit of {ticket.ticket_id}")

        try:
            await self.transport.send_with_buttons(
                chat_id, submitted_message(ticket), UserKeyboards.cancel_ticket(ticket.ticket_id)
            )
        except TelegramAPIError as e:
            logger.error(f"Failed to confirm {ticket.ticket_id} to {user_id}: {e}")

        await self.routing.route(ticket)
        logger.info(f"Issue {ticket.ticket_id} submitted by {conversation.display_name}")
        return ticket

    async def cancel(self, user_id, chat_id) -> bool:
        """/cancel - прервать диалог"""
        user_id = str(user_id)
        async with self._locks.hold(user_id):
            if self.conversations.end(user_id) is None:
                raise NoActiveConversation("ℹ️ You have no issue in progress.")

        await self.transport.send_keyboard(
            chat_id,
            "❌ Issue creation cancelled.\n\nSend any message to start a new issue.",
            UserKeyboards.remove()
        )
        return True
