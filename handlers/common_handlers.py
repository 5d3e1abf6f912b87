"""
Общие команды (любой чат): help, stats, open_issues, whoami, list_users
"""
import logging

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from aiogram.utils.text_decorations import html_decoration as hd

from constants import DEPARTMENTS
from database import Database
from services.permissions import PermissionsManager
from services.stats_service import StatsService
from services.ticket_service import TicketService
from utils.texts import user_info, user_list

router = Router()
logger = logging.getLogger(__name__)

HELP_TEXT = (
    "📋 <b>HELPDESK COMMAND GUIDE</b>\n\n"
    "📊 <b>Reports &amp; Statistics</b>\n"
    "/stats — Today's overall statistics\n"
    "/stats JHQ — Branch-specific stats\n"
    "/stats Sales — Department-specific stats\n"
    "/open_issues — All open issues by branch\n\n"
    "👤 <b>Account</b>\n"
    "/whoami — View your user ID &amp; role\n"
    "/list_users — All registered users (Staff)\n\n"
    "🔧 <b>Support Staff — Status Updates</b>\n"
    "• Click inline buttons on ticket messages\n"
    "• Or reply /status to any ticket message\n"
    "• Remarks are required when resolving\n"
    "• /cancel_remarks — skip the pending remarks prompt\n\n"
    "📝 <b>Create a Ticket</b>\n"
    "Send any message directly to this bot in a private chat to start a new ticket.\n"
    "/cancel — abort the ticket you are filling in"
)


@router.message(Command("help"))
async def cmd_help(message: Message):
    """Команда /help"""
    await message.answer(HELP_TEXT)


@router.message(Command("stats"))
async def cmd_stats(message: Message, command: CommandObject, stats: StatsService):
    """
    Команда /stats

    /stats - за сегодня, /stats <филиал>, /stats <отдел>
    """
    try:
        query = (command.args or "").strip()
        if not query:
            await message.answer(await stats.format_today_stats())
            return

        branch = next((b for b in stats.branches if b.lower() == query.lower()), None)
        if branch is not None:
            await message.answer(await stats.format_branch_stats(branch))
            return

        department = next((d for d in DEPARTMENTS if d.lower() == query.lower()), None)
        if department is not None:
            await message.answer(await stats.format_department_stats(department))
            return

        await message.answer(
            f"❌ Unknown branch or department: \"{hd.quote(query)}\"\n\n"
            f"Branches: {', '.join(stats.branches)}\n"
            f"Departments: {', '.join(DEPARTMENTS)}"
        )
    except Exception as e:
        logger.error(f"Error in cmd_stats: {e}", exc_info=True)
        await message.answer("❌ Failed to load statistics. Please try again later.")


@router.message(Command("open_issues", "open"))
async def cmd_open_issues(message: Message, stats: StatsService):
    """Команда /open_issues"""
    try:
        await message.answer(await stats.format_open_issues())
    except Exception as e:
        logger.error(f"Error in cmd_open_issues: {e}", exc_info=True)
        await message.answer("❌ Failed to load open issues. Please try again later.")


@router.message(Command("whoami"))
async def cmd_whoami(message: Message, db: Database, permissions: PermissionsManager):
    """Команда /whoami"""
    try:
        async with db.session_factory() as session:
            user = await TicketService(session).get_user_by_telegram_id(message.from_user.id)

        if user is None:
            await message.answer("User not found in database.")
            return

        await message.answer(user_info(user, permissions.is_support_staff(message.from_user.id)))
    except Exception as e:
        logger.error(f"Error in cmd_whoami: {e}", exc_info=True)
        await message.answer("❌ Error loading your information.")


@router.message(Command("list_users"))
async def cmd_list_users(message: Message, db: Database, permissions: PermissionsManager):
    """Команда /list_users (только поддержка)"""
    if not permissions.is_support_staff(message.from_user.id):
        await message.answer(
            "❌ This command is only available to support staff.\n\n"
            "Use /whoami to see your own information."
        )
        return

    try:
        async with db.session_factory() as session:
            users = await TicketService(session).list_users(limit=25)
        await message.answer(user_list(users))
    except Exception as e:
        logger.error(f"Error in cmd_list_users: {e}", exc_info=True)
        await message.answer("❌ Error loading users.")
