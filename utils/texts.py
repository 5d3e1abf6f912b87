"""
Тексты сообщений о тикетах (HTML parse mode)
"""
from datetime import datetime
from typing import Optional

from aiogram.utils.text_decorations import html_decoration as hd

from database.models import Ticket, TicketStatus, User

SEPARATOR = "━━━━━━━━━━━━━━━━━━━"


def _when(moment: Optional[datetime]) -> str:
    return moment.strftime("%d.%m.%Y %H:%M") if moment else "?"


def shorten(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def new_ticket_message(ticket: Ticket) -> str:
    """Карточка нового тикета для группы филиала"""
    return (
        f"🆕 <b>NEW HELPDESK ISSUE</b>\n\n"
        f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
        f"🏢 Branch: {hd.quote(ticket.branch)}\n"
        f"📂 Department: {hd.quote(ticket.department)}\n"
        f"👤 Employee: {hd.quote(ticket.creator_name)}\n"
        f"🔧 Category: {hd.quote(ticket.category)}\n"
        f"⚠️ Urgency: {hd.quote(ticket.urgency)}\n"
        f"📞 Contact: {hd.quote(ticket.contact_person)}\n\n"
        f"📝 Description:\n{hd.quote(ticket.description)}\n\n"
        f"Status: {ticket.status.label}\n"
        f"Created: {_when(ticket.created_at)}\n\n"
        f"{SEPARATOR}\n"
        f"Use the buttons below or reply to this message with /status"
    )


def ticket_card(ticket: Ticket, updated_by: str, remarks: Optional[str] = None) -> str:
    """Карточка тикета после смены статуса"""
    text = (
        f"📋 <b>HELPDESK ISSUE</b>\n\n"
        f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
        f"🏢 Branch: {hd.quote(ticket.branch)}\n"
        f"Department: {hd.quote(ticket.department)}\n"
        f"Employee: {hd.quote(ticket.creator_name)}\n"
        f"Category: {hd.quote(ticket.category)}\n"
        f"⚠️ Urgency: {hd.quote(ticket.urgency)}\n"
        f"Contact: {hd.quote(ticket.contact_person)}\n\n"
        f"📝 Description:\n{hd.quote(ticket.description)}\n\n"
        f"📊 Status: {ticket.status.label}\n"
        f"🔄 Updated by: {hd.quote(updated_by)}"
    )
    if ticket.assigned_to:
        text += f"\n👤 Assigned to: {hd.quote(ticket.assigned_to_name or ticket.assigned_to)}"
    if remarks:
        text += f"\n\n📝 Remarks:\n{hd.quote(remarks)}"
    text += f"\n\nCreated: {_when(ticket.created_at)}"
    return text


def monitoring_copy(ticket: Ticket, metrics: Optional[str] = None) -> str:
    """Копия нового тикета для группы мониторинга"""
    text = (
        f"[📊 MONITORING COPY - Read Only]\n\n"
        f"🆕 <b>NEW ISSUE - {hd.quote(ticket.branch)} Branch</b>\n\n"
        f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
        f"📂 Department: {hd.quote(ticket.department)}\n"
        f"⚠️ Urgency: {hd.quote(ticket.urgency)}\n"
        f"🔧 Category: {hd.quote(ticket.category)}\n"
        f"👤 Employee: {hd.quote(ticket.creator_name)}\n\n"
        f"📝 Description:\n{hd.quote(shorten(ticket.description))}"
    )
    if metrics:
        text += f"\n\n{SEPARATOR}\n{metrics}"
    text += f"\n\nCreated: {_when(ticket.created_at)}"
    return text


def status_line(old: TicketStatus, new: TicketStatus) -> str:
    return f"{old.label} → {new.label}"


def submitted_message(ticket: Ticket) -> str:
    """Подтверждение автору после создания"""
    return (
        f"✅ <b>ISSUE SUBMITTED</b>\n\n"
        f"📋 Issue ID: <code>{ticket.ticket_id}</code>\n"
        f"🏢 Branch: {hd.quote(ticket.branch)}\n"
        f"⚠️ Urgency: {hd.quote(ticket.urgency)}\n\n"
        f"Our support team has been notified and will get back to you.\n"
        f"You will receive updates here as the status changes."
    )


# ==================== ПОЛЬЗОВАТЕЛИ ====================

def user_info(user: User, is_support_staff: bool) -> str:
    """/whoami"""
    lines = ["👤 <b>YOUR INFORMATION</b>", "", f"Name: {hd.quote(user.full_name or 'Unknown')}"]
    if user.username:
        lines.append(f"Username: @{hd.quote(user.username)}")
    lines += [
        "",
        f"User ID: <code>{user.telegram_id}</code>",
        f"Chat ID: <code>{user.chat_id or '?'}</code>",
        "",
        f"Role: {'Support Staff' if is_support_staff else 'Employee'}",
        "   - Can create issues",
        "   - Can update issue status" if is_support_staff else "   - Cannot update issue status",
        "",
        "Statistics:",
        f"   Messages Sent: {user.message_count}",
        f"   First Seen: {_when(user.first_seen)}",
        f"   Last Seen: {_when(user.last_seen)}",
    ]
    return "\n".join(lines)


def user_list(users: list[User]) -> str:
    """/list_users"""
    if not users:
        return "No users have messaged the bot yet."

    lines = ["👥 <b>REGISTERED USERS</b>", "", f"Total Users: {len(users)}", ""]
    for i, user in enumerate(users, 1):
        lines.append(f"{i}. {hd.quote(user.full_name or 'Unknown')} [{user.role}]")
        lines.append(f"   User ID: <code>{user.telegram_id}</code>")
        if user.username:
            lines.append(f"   Username: @{hd.quote(user.username)}")
        lines.append(f"   Messages: {user.message_count}")
        lines.append(f"   Last Seen: {_when(user.last_seen)}")
        lines.append("")
    return "\n".join(lines).rstrip()
