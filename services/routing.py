"""
Маршрутизация тикетов по филиалам

Новый тикет уходит в группу своего филиала (SUPPORT_GROUP_<BRANCH>),
если её нет - в общую группу SUPPORT_GROUP_ID. Копия (только чтение)
уходит в центральную группу мониторинга, если она включена.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Optional

from aiogram.exceptions import TelegramAPIError
from aiogram.utils.text_decorations import html_decoration as hd

from constants import SYSTEM_ACTOR
from database.models import Ticket, TicketStatus
from keyboards import StaffKeyboards, UserKeyboards
from services.exceptions import ConfigurationError
from services.status_machine import TransitionResult
from utils.texts import monitoring_copy, new_ticket_message, status_line

if TYPE_CHECKING:
    from services.stats_service import StatsService
    from services.transport import TelegramTransport

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    TicketStatus.PENDING: "Your issue has been submitted and is awaiting review.",
    TicketStatus.IN_PROCESS: "Support is actively working on your issue.",
    TicketStatus.RESOLVED: "Your issue has been marked as resolved.",
    TicketStatus.RESOLVED_WITH_ISSUES: "Your issue has been resolved with some remaining issues noted.",
    TicketStatus.CONFIRMED: "Your issue is confirmed as resolved. Thank you!",
    TicketStatus.CANCELLED_STAFF: "Your issue has been cancelled by the support team.",
    TicketStatus.CANCELLED_USER: "Your issue has been cancelled.",
}


@dataclass
class RoutingResult:
    ticket_id: str
    action_chat_id: Optional[str] = None
    action_message_id: Optional[int] = None
    monitoring_delivered: bool = False
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.action_message_id is not None


class RoutingEngine:
    """Доставка тикетов и уведомлений о смене статуса"""

    def __init__(
        self,
        transport: "TelegramTransport",
        branch_groups: Mapping[str, str],
        fallback_group: Optional[str] = None,
        monitoring_group: Optional[str] = None,
        monitoring_enabled: bool = False,
        stats: Optional["StatsService"] = None,
        auto_confirm_days: int = 7
    ):
        self.transport = transport
        self.branch_groups = {k: v for k, v in branch_groups.items() if v}
        self.fallback_group = fallback_group or None
        self.monitoring_group = monitoring_group or None
        self.monitoring_enabled = monitoring_enabled
        self.stats = stats
        self.auto_confirm_days = auto_confirm_days

        logger.info(f"Branch groups configured: {len(self.branch_groups)}")
        logger.info(f"Central monitoring: {'ENABLED' if self.monitoring_active else 'DISABLED'}")

    @property
    def monitoring_active(self) -> bool:
        return bool(self.monitoring_enabled and self.monitoring_group)

    def action_group(self, branch: str) -> Optional[str]:
        """Группа филиала или общая группа"""
        return self.branch_groups.get(branch) or self.fallback_group

    def is_monitoring_chat(self, chat_id) -> bool:
        return bool(self.monitoring_group) and str(chat_id) == str(self.monitoring_group)

    # ==================== НОВЫЙ ТИКЕТ ====================

    async def route(self, ticket: Ticket) -> RoutingResult:
        """Отправить тикет в группу филиала и копию в мониторинг"""
        result = RoutingResult(ticket_id=ticket.ticket_id)
        target = self.action_group(ticket.branch)

        if target is None:
            error = ConfigurationError(
                f"⚠️ No support group configured for branch {ticket.branch} and no fallback group."
            )
            logger.error(f"Cannot route {ticket.ticket_id}: {error.message}")
            result.error = error.message
        else:
            result.action_chat_id = target
            try:
                result.action_message_id = await self.transport.send_with_buttons(
                    target,
                    new_ticket_message(ticket),
                    StaffKeyboards.status_buttons(ticket.ticket_id, ticket.status)
                )
                logger.info(f"Sent {ticket.ticket_id} to {ticket.branch} group {target}")
            except TelegramAPIError as e:
                logger.error(f"Failed to deliver {ticket.ticket_id} to {target}: {e}", exc_info=True)
                result.error = f"❌ Failed to deliver issue to support group: {e}"

        if self.monitoring_active:
            metrics = await self._branch_metrics(ticket.branch)
            result.monitoring_delivered = await self._send_monitoring(monitoring_copy(ticket, metrics))

        return result

    async def _branch_metrics(self, branch: str) -> Optional[str]:
        if self.stats is None:
            return None
        try:
            return await self.stats.branch_metrics_line(branch)
        except Exception as e:
            logger.error(f"Error calculating branch stats for {branch}: {e}", exc_info=True)
            return None

    async def _send_monitoring(self, text: str) -> bool:
        """Мониторинг - по возможности, ошибки только логируются"""
        try:
            await self.transport.send_direct(self.monitoring_group, text)
            return True
        except Exception as e:
            logger.error(f"Failed to send to monitoring group {self.monitoring_group}: {e}", exc_info=True)
            return False

    # ==================== СМЕНА СТАТУСА ====================

    async def notify_status_change(
        self,
        ticket: Ticket,
        old: TicketStatus,
        new: TicketStatus,
        actor_name: str,
        remarks: Optional[str] = None,
        actor_id: Optional[str] = None,
        include_creator: bool = True
    ):
        """Уведомить автора и мониторинг (и филиал, если автор переоткрыл тикет)"""
        if include_creator:
            await self._notify_creator(ticket, old, new, actor_name, remarks, actor_id)

        if self.monitoring_active:
            text = (
                f"[📊 STATUS UPDATE - Branch: {hd.quote(ticket.branch)}]\n\n"
                f"📋 Issue: <code>{ticket.ticket_id}</code>\n"
                f"📂 Department: {hd.quote(ticket.department)}\n"
                f"📊 Status: {status_line(old, new)}\n"
                f"👤 Updated by: {hd.quote(actor_name)}"
            )
            if new.is_resolved:
                metrics = await self._branch_metrics(ticket.branch)
                if metrics:
                    text += f"\n\n{metrics}"
            await self._send_monitoring(text)

        if old.is_resolved and new == TicketStatus.IN_PROCESS:
            await self._announce_reopen(ticket, actor_name)

    async def _notify_creator(
        self,
        ticket: Ticket,
        old: TicketStatus,
        new: TicketStatus,
        actor_name: str,
        remarks: Optional[str],
        actor_id: Optional[str]
    ):
        if actor_id == SYSTEM_ACTOR:
            text = (
                f"✔️ <b>TICKET AUTO-CONFIRMED</b>\n\n"
                f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
                f"📊 Status: {status_line(old, new)}\n\n"
                f"No response was received within {self.auto_confirm_days} days, "
                f"so the ticket was confirmed automatically.\n"
                f"To report a new problem, send any message."
            )
        elif new == TicketStatus.CANCELLED_STAFF:
            text = (
                f"❌ <b>TICKET CANCELLED</b>\n\n"
                f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
                f"👤 Cancelled by: {hd.quote(actor_name)}\n\n"
                f"📝 Reason:\n{hd.quote(remarks or 'N/A')}\n\n"
                f"If you have questions, please contact our support team.\n"
                f"To create a new ticket, send any message."
            )
        else:
            text = (
                f"📋 <b>ISSUE STATUS UPDATE</b>\n\n"
                f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
                f"📊 Status: {status_line(old, new)}\n"
                f"👤 Updated by: {hd.quote(actor_name)}\n\n"
                f"{STATUS_MESSAGES.get(new, 'Issue status updated.')}"
            )

        try:
            await self.transport.send_direct(ticket.creator_id, text)
        except TelegramAPIError as e:
            logger.error(f"Failed to notify creator of {ticket.ticket_id}: {e}")

    async def _announce_reopen(self, ticket: Ticket, actor_name: str):
        target = self.action_group(ticket.branch)
        if target is None:
            return
        text = (
            f"🔄 <b>TICKET REOPENED</b>\n\n"
            f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
            f"👤 Employee: {hd.quote(actor_name)} says the issue is NOT resolved.\n\n"
            f"📝 Description:\n{hd.quote(ticket.description)}"
        )
        try:
            await self.transport.send_with_buttons(
                target, text, StaffKeyboards.status_buttons(ticket.ticket_id, ticket.status)
            )
        except TelegramAPIError as e:
            logger.error(f"Failed to announce reopen of {ticket.ticket_id}: {e}")

    async def send_confirmation_request(self, ticket: Ticket, actor_name: str, remarks: Optional[str] = None):
        """Попросить автора подтвердить решение"""
        text = (
            f"📋 <b>ISSUE STATUS UPDATE</b>\n\n"
            f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
            f"📊 Status: {ticket.status.label}\n"
            f"👤 Updated by: {hd.quote(actor_name)}"
        )
        if remarks:
            text += f"\n\n📝 Remarks:\n{hd.quote(remarks)}"
        text += (
            f"\n\n{STATUS_MESSAGES[ticket.status]}\n\n"
            f"Please confirm if the issue has been resolved to your satisfaction.\n\n"
            f"⚠️ If you don't respond within {self.auto_confirm_days} days, "
            f"the ticket will be automatically confirmed."
        )
        try:
            await self.transport.send_with_buttons(
                ticket.creator_id, text, UserKeyboards.confirm_resolution(ticket.ticket_id)
            )
        except TelegramAPIError as e:
            logger.error(f"Failed to send confirmation request for {ticket.ticket_id}: {e}")

    async def on_status_changed(self, result: TransitionResult):
        """Слушатель StatusStateMachine"""
        # Запрос подтверждения заменяет обычное уведомление автора
        entered_resolved = result.new_status.is_resolved
        if entered_resolved:
            await self.send_confirmation_request(result.ticket, result.actor_name, result.remarks)

        await self.notify_status_change(
            result.ticket,
            result.old_status,
            result.new_status,
            result.actor_name,
            result.remarks,
            result.actor_id,
            include_creator=not entered_resolved
        )
