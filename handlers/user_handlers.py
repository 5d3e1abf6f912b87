"""
Обработчики сообщений от сотрудников (личный чат с ботом)

Любое сообщение без активного диалога запускает мастер создания тикета.
Кнопки подтверждения решения и отмены тикета - тоже здесь.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ChatType
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, Message

from keyboards import CancelCallback, ConfirmCallback
from services.exceptions import HelpdeskError
from services.wizard import TicketWizard
from services.workflow import TicketWorkflow

router = Router()
router.message.filter(F.chat.type == ChatType.PRIVATE)
logger = logging.getLogger(__name__)


@router.message(CommandStart())
async def cmd_start(message: Message, wizard: TicketWizard):
    """Команда /start - начать создание тикета"""
    try:
        await wizard.start(message.from_user.id, message.chat.id, message.from_user.full_name)
    except HelpdeskError as e:
        await message.answer(e.message)
    except Exception as e:
        logger.error(f"Error in cmd_start: {e}", exc_info=True)
        await message.answer("❌ Something went wrong. Please try again later.")


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, wizard: TicketWizard):
    """Команда /cancel - прервать создание тикета"""
    try:
        await wizard.cancel(message.from_user.id, message.chat.id)
    except HelpdeskError as e:
        await message.answer(e.message)


@router.message(Command("status"))
async def cmd_status_private(message: Message):
    """/status работает только в группе поддержки"""
    await message.answer(
        "❌ Status updates can only be done in the support group.\n\n"
        "To create a ticket, just send me a regular message."
    )


@router.message(F.text.startswith("/"))
async def unknown_command(message: Message):
    await message.answer("❓ Unknown command. Send /help for available commands.")


@router.message(F.text)
async def handle_user_message(message: Message, wizard: TicketWizard):
    """Ответ на текущий шаг мастера (или начало нового тикета)"""
    try:
        await wizard.handle_message(
            message.from_user.id,
            message.chat.id,
            message.from_user.full_name,
            message.text
        )
    except HelpdeskError as e:
        await message.answer(e.message)
    except Exception as e:
        logger.error(f"Error in handle_user_message: {e}", exc_info=True)
        await message.answer("❌ Something went wrong. Please try again later.")


@router.message()
async def handle_non_text(message: Message):
    """Фото, стикеры и т.п."""
    await message.answer("📝 Please send a text message.")


# ==================== КНОПКИ АВТОРА ====================

@router.callback_query(ConfirmCallback.filter())
async def on_confirm_resolution(callback: CallbackQuery, callback_data: ConfirmCallback, workflow: TicketWorkflow):
    """Подтвердить решение / сообщить, что проблема не решена"""
    message = callback.message
    try:
        reply = await workflow.confirm_resolution(
            message.chat.id if message else callback.from_user.id,
            message.message_id if message else None,
            callback.from_user.id,
            callback.from_user.full_name,
            callback_data.ticket_id,
            callback_data.answer
        )
        await callback.answer(reply.text, show_alert=reply.show_alert)
    except HelpdeskError as e:
        await callback.answer(e.message, show_alert=True)
    except Exception as e:
        logger.error(f"Error in on_confirm_resolution: {e}", exc_info=True)
        await callback.answer("❌ Error processing your response", show_alert=True)


@router.callback_query(CancelCallback.filter())
async def on_cancel_ticket(callback: CallbackQuery, callback_data: CancelCallback, workflow: TicketWorkflow):
    """Отмена тикета автором"""
    message = callback.message
    try:
        reply = await workflow.cancel_by_creator(
            message.chat.id if message else callback.from_user.id,
            message.message_id if message else None,
            callback.from_user.id,
            callback.from_user.full_name,
            callback_data.ticket_id
        )
        await callback.answer(reply.text, show_alert=reply.show_alert)
    except HelpdeskError as e:
        await callback.answer(e.message, show_alert=True)
    except Exception as e:
        logger.error(f"Error in on_cancel_ticket: {e}", exc_info=True)
        await callback.answer("❌ Error cancelling ticket", show_alert=True)
