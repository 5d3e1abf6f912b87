"""
Действия с тикетами: кнопки статуса, /status, подтверждение и отмена автором
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from aiogram.utils.text_decorations import html_decoration as hd

from constants import TICKET_ID_PATTERN
from database.models import REMARKS_REQUIRED, STATUS_CODES, TicketStatus
from keyboards import StaffKeyboards
from services.exceptions import AlreadyTerminal, RemarksRequired, ValidationError
from services.permissions import PermissionsManager
from services.remarks_queue import PendingRemarksEntry, RemarksQueueCoordinator
from services.status_machine import StatusStateMachine
from utils.texts import status_line, ticket_card

if TYPE_CHECKING:
    from services.transport import TelegramTransport

logger = logging.getLogger(__name__)

TICKET_ID_RE = re.compile(TICKET_ID_PATTERN)

STATUS_HELP = (
    "💡 <b>HOW TO UPDATE STATUS</b>\n\n"
    "1️⃣ Reply to any ticket message with /status\n"
    "2️⃣ Click the desired status button\n"
    "3️⃣ Type your remarks when prompted\n\n"
    "Or use the inline buttons directly on the ticket message.\n"
    "Legacy format: /status ISSUE-ID STATUS [remarks]"
)


@dataclass
class CallbackReply:
    """Ответ на нажатие кнопки (всплывающее уведомление)"""
    text: str
    show_alert: bool = False


class TicketWorkflow:
    """Действия сотрудников и авторов тикетов"""

    def __init__(
        self,
        machine: StatusStateMachine,
        remarks: RemarksQueueCoordinator,
        transport: "TelegramTransport",
        permissions: PermissionsManager,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.machine = machine
        self.remarks = remarks
        self.transport = transport
        self.permissions = permissions
        self.clock = clock

    # ==================== СОТРУДНИКИ ====================

    async def press_status_button(
        self,
        chat_id,
        message_id: Optional[int],
        actor_id,
        actor_name: str,
        ticket_id: str,
        code: str
    ) -> CallbackReply:
        """
        Кнопка st:<ticket_id>:<code>

        Resolve / cancel - ставится в очередь комментариев,
        остальное применяется сразу и карточка обновляется.
        """
        actor_id = str(actor_id)
        self.permissions.require(actor_id, "update")

        new_status = STATUS_CODES.get(code)
        if new_status is None:
            raise ValidationError("❌ Invalid status")

        ticket = await self.machine.precheck(ticket_id, new_status, actor_id)

        if new_status in REMARKS_REQUIRED:
            is_cancellation = new_status == TicketStatus.CANCELLED_STAFF
            await self.remarks.enqueue(chat_id, actor_id, actor_name, PendingRemarksEntry(
                ticket_id=ticket_id,
                requested_status=new_status,
                card_message_id=message_id,
                prior_status=ticket.status,
                is_cancellation=is_cancellation,
                queued_at=self.clock(),
                description=ticket.description
            ))
            if is_cancellation:
                return CallbackReply("📝 Please provide a reason for cancellation")
            return CallbackReply("📝 Please type your remarks now")

        result = await self.machine.transition(ticket_id, new_status, actor_id, actor_name)
        if message_id is not None:
            await self.transport.edit_message(
                chat_id,
                message_id,
                ticket_card(result.ticket, actor_name),
                StaffKeyboards.status_buttons(ticket_id, result.ticket.status)
            )
        return CallbackReply(f"✅ Updated to {new_status.label}")

    async def status_command(
        self,
        chat_id,
        actor_id,
        actor_name: str,
        text: str,
        replied_text: Optional[str] = None
    ):
        """
        /status в группе поддержки

        Ответом на карточку - кнопки допустимых статусов.
        /status ISSUE-ID STATUS [remarks] - смена статуса сразу.
        """
        actor_id = str(actor_id)
        self.permissions.require(actor_id, "update")

        if replied_text is not None:
            await self._status_buttons_for_reply(chat_id, replied_text)
            return

        parts = (text or "").split(maxsplit=3)
        if len(parts) == 1:
            await self.transport.send_direct(chat_id, STATUS_HELP)
            return
        if len(parts) < 3:
            raise ValidationError(
                "❌ Invalid command format.\n\nUsage:\n"
                "• Reply /status to a ticket message\n"
                "• /status ISSUE-ID STATUS [remarks]"
            )

        ticket_id, status_input = parts[1].upper(), parts[2]
        remarks = parts[3] if len(parts) > 3 else None

        if not TICKET_ID_RE.fullmatch(ticket_id):
            raise ValidationError("❌ Invalid issue ID. Expected format: ISSUE-YYYYMMDD-NNNN")

        new_status = TicketStatus.parse(status_input)
        if new_status is None or new_status == TicketStatus.CLOSED:
            valid = ", ".join(s.value for s in TicketStatus if s != TicketStatus.CLOSED)
            raise ValidationError(f"❌ Invalid status.\n\nValid statuses: {valid}")

        try:
            result = await self.machine.transition(ticket_id, new_status, actor_id, actor_name, remarks)
        except RemarksRequired as e:
            e.message += (
                f"\n\nUsage:\n/status {ticket_id} {new_status.value} &lt;your remarks&gt;\n\n"
                f"Or use the inline buttons on the ticket message for a guided flow."
            )
            raise

        if not result.changed:
            await self.transport.send_direct(
                chat_id, f"ℹ️ Issue <code>{ticket_id}</code> is already {new_status.label}."
            )
            return

        text = (
            f"✅ Updated <code>{ticket_id}</code>\n"
            f"Status: {status_line(result.old_status, result.new_status)}"
        )
        if result.remarks:
            text += f"\n\n📝 Remarks:\n{hd.quote(result.remarks)}"
        await self.transport.send_direct(chat_id, text)

    async def _status_buttons_for_reply(self, chat_id, replied_text: str):
        match = TICKET_ID_RE.search(replied_text)
        if match is None:
            raise ValidationError(
                "❌ Could not find a ticket ID in the message you replied to.\n\n"
                "Please reply /status to a ticket message."
            )

        ticket = await self.machine.get_ticket(match.group(0))
        if ticket.status.is_terminal:
            raise AlreadyTerminal(ticket.ticket_id, ticket.status)

        markup = StaffKeyboards.status_buttons(ticket.ticket_id, ticket.status)
        text = (
            f"📋 <b>UPDATE STATUS</b>\n\n"
            f"📋 Issue: <code>{ticket.ticket_id}</code>\n"
            f"📊 Current Status: {ticket.status.label}\n\n"
        )
        if markup is None:
            await self.transport.send_direct(chat_id, text + "⏳ Waiting for the employee to confirm resolution.")
        else:
            await self.transport.send_with_buttons(chat_id, text + "Select new status below:", markup)

    # ==================== АВТОР ТИКЕТА ====================

    async def confirm_resolution(
        self,
        chat_id,
        message_id: Optional[int],
        actor_id,
        actor_name: str,
        ticket_id: str,
        answer: str
    ) -> CallbackReply:
        """Кнопка cf:<ticket_id>:yes|no"""
        if answer == "yes":
            await self.machine.transition(ticket_id, TicketStatus.CONFIRMED, actor_id, actor_name)
            text = (
                f"✅ <b>TICKET CONFIRMED</b>\n\n"
                f"📋 Issue <code>{ticket_id}</code> has been confirmed as resolved.\n"
                f"Thank you for your feedback!\n\n"
                f"If you have other issues, send any message to create a new ticket."
            )
            reply = CallbackReply("✅ Confirmed!")
        elif answer == "no":
            await self.machine.transition(ticket_id, TicketStatus.IN_PROCESS, actor_id, actor_name)
            text = (
                f"🔄 <b>TICKET REOPENED</b>\n\n"
                f"📋 Issue <code>{ticket_id}</code> has been reopened.\n"
                f"Our support team has been notified and will follow up.\n\n"
                f"Thank you for your feedback!"
            )
            reply = CallbackReply("📋 Ticket reopened")
        else:
            raise ValidationError("❌ Invalid callback data")

        if message_id is not None:
            await self.transport.edit_message(chat_id, message_id, text)
        return reply

    async def cancel_by_creator(
        self,
        chat_id,
        message_id: Optional[int],
        actor_id,
        actor_name: str,
        ticket_id: str
    ) -> CallbackReply:
        """Кнопка cancel:<ticket_id>"""
        await self.machine.transition(ticket_id, TicketStatus.CANCELLED_USER, actor_id, actor_name)
        if message_id is not None:
            await self.transport.edit_message(
                chat_id,
                message_id,
                f"❌ <b>TICKET CANCELLED</b>\n\n"
                f"📋 Issue <code>{ticket_id}</code> has been cancelled by you.\n\n"
                f"If you need help, send any message to create a new ticket."
            )
        return CallbackReply("✅ Ticket cancelled")
