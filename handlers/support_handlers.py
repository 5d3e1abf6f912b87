"""
Обработчики для групп поддержки

- кнопки смены статуса на карточках тикетов;
- /status (ответом на карточку или ISSUE-ID STATUS [remarks]);
- текст сотрудника - комментарий к ожидающему тикету;
- группа мониторинга только для чтения.
"""
import logging
from typing import Optional

from aiogram import F, Router
from aiogram.enums import ChatType
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from keyboards import StatusCallback
from services.exceptions import HelpdeskError
from services.remarks_queue import RemarksQueueCoordinator
from services.routing import RoutingEngine
from services.workflow import TicketWorkflow

router = Router()
router.message.filter(F.chat.type.in_({ChatType.GROUP, ChatType.SUPERGROUP}))
logger = logging.getLogger(__name__)


async def in_monitoring_chat(message: Message, routing: RoutingEngine) -> bool:
    """Сообщение в центральной группе мониторинга"""
    return routing.is_monitoring_chat(message.chat.id)


def replied_text(message: Message) -> Optional[str]:
    """Текст сообщения, на которое ответили (или None)"""
    reply = message.reply_to_message
    if reply is None:
        return None
    return reply.text or reply.caption or ""


@router.message(in_monitoring_chat)
async def guard_monitoring_chat(message: Message, routing: RoutingEngine):
    """Группа мониторинга - только сообщения бота"""
    deleted = await routing.transport.delete_message(message.chat.id, message.message_id)
    if not deleted:
        logger.warning(f"Could not delete message {message.message_id} in monitoring group")


@router.message(Command("status"))
async def cmd_status(message: Message, workflow: TicketWorkflow):
    """Команда /status"""
    try:
        await workflow.status_command(
            message.chat.id,
            message.from_user.id,
            message.from_user.full_name,
            message.text,
            replied_text(message)
        )
    except HelpdeskError as e:
        await message.reply(e.message)
    except Exception as e:
        logger.error(f"Error in cmd_status: {e}", exc_info=True)
        await message.reply("❌ Error updating issue status. Please try again.")


@router.message(Command("cancel_remarks"))
async def cmd_cancel_remarks(message: Message, remarks: RemarksQueueCoordinator):
    """Команда /cancel_remarks - пропустить ожидающий комментарий"""
    entry = await remarks.cancel(message.chat.id, message.from_user.id, message.from_user.full_name)
    if entry is None:
        await message.reply("ℹ️ You have no pending remarks.")


@router.message(F.text, ~F.text.startswith("/"))
async def handle_group_text(message: Message, remarks: RemarksQueueCoordinator):
    """Текст в группе - комментарий, если сотрудник его должен"""
    try:
        outcome = await remarks.resolve(
            message.chat.id,
            message.from_user.id,
            message.from_user.full_name,
            message.text
        )
    except Exception as e:
        logger.error(f"Error in handle_group_text: {e}", exc_info=True)
        await message.reply("❌ Error saving remarks. Please try again.")
        return

    if outcome is None:
        await message.answer(
            "⛔ Ticket creation is not available in groups.\n\n"
            "Please message the bot directly to submit a new helpdesk ticket."
        )


@router.callback_query(StatusCallback.filter())
async def on_status_button(callback: CallbackQuery, callback_data: StatusCallback, workflow: TicketWorkflow):
    """Кнопка смены статуса на карточке тикета"""
    if callback.message is None:
        await callback.answer("❌ Message is no longer available", show_alert=True)
        return

    try:
        reply = await workflow.press_status_button(
            callback.message.chat.id,
            callback.message.message_id,
            callback.from_user.id,
            callback.from_user.full_name,
            callback_data.ticket_id,
            callback_data.code
        )
        await callback.answer(reply.text, show_alert=reply.show_alert)
    except HelpdeskError as e:
        await callback.answer(e.message, show_alert=True)
    except Exception as e:
        logger.error(f"Error in on_status_button: {e}", exc_info=True)
        await callback.answer("❌ Error updating status", show_alert=True)
