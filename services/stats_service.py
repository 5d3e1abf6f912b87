"""
Статистика и отчёты

Только чтение: счётчики по дню / неделе / филиалу / отделу
и готовые тексты для /stats, /open_issues и плановых отчётов.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from aiogram.utils.text_decorations import html_decoration as hd
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from constants import URGENCY_LEVELS
from database.models import (
    CANCELLED_STATUSES,
    RESOLVED_STATUSES,
    Ticket,
    TicketStatus,
)
from services.ticket_service import TicketFilter, TicketService

logger = logging.getLogger(__name__)

# Считаются закрытыми для статистики (всё остальное - открытые)
CLOSED_FOR_STATS = frozenset(RESOLVED_STATUSES | CANCELLED_STATUSES | {
    TicketStatus.CONFIRMED,
    TicketStatus.CLOSED,
})

# Считаются решёнными
DONE_STATUSES = frozenset(RESOLVED_STATUSES | {TicketStatus.CONFIRMED, TicketStatus.CLOSED})

URGENCY_ICONS = {"Critical": "🔴", "High": "🟠", "Medium": "🟡", "Low": "🟢"}


def is_open(ticket: Ticket) -> bool:
    return ticket.status not in CLOSED_FOR_STATS


def _rate(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


def _tree(lines: list[str]) -> list[str]:
    """Префиксы ├─ / └─ для списка строк"""
    return [
        f"{'└─' if i == len(lines) - 1 else '├─'} {line}"
        for i, line in enumerate(lines)
    ]


def _counts(tickets: Iterable[Ticket]) -> dict:
    tickets = list(tickets)
    return {
        "total": len(tickets),
        "open": sum(1 for t in tickets if is_open(t)),
        "resolved": sum(1 for t in tickets if t.status in CLOSED_FOR_STATS),
    }


class StatsService:
    """Статистика по тикетам"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        branches: Iterable[str],
        clock: Callable[[], datetime] = datetime.now
    ):
        self.session_factory = session_factory
        self.branches = list(branches)
        self.clock = clock

    # ==================== ВЫБОРКИ ====================

    def _today_bounds(self) -> tuple[datetime, datetime]:
        start = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        return start, start + timedelta(days=1)

    def _formatted_date(self, moment: Optional[datetime] = None) -> str:
        moment = moment or self.clock()
        return f"{moment:%b} {moment.day}, {moment.year}"

    async def _tickets(self, filters: Optional[TicketFilter] = None) -> list[Ticket]:
        async with self.session_factory() as session:
            return await TicketService(session).query_tickets(filters)

    async def _today_tickets(self, **kwargs) -> list[Ticket]:
        start, end = self._today_bounds()
        return await self._tickets(TicketFilter(created_from=start, created_to=end, **kwargs))

    async def _open_tickets(self) -> list[Ticket]:
        return [t for t in await self._tickets() if is_open(t)]

    # ==================== СЕГОДНЯ ====================

    async def today_stats(self) -> dict:
        """Общая статистика за сегодня"""
        tickets = await self._today_tickets()
        total = len(tickets)
        done = sum(1 for t in tickets if t.status in DONE_STATUSES)

        return {
            "date": self._today_bounds()[0].date(),
            "total": total,
            "pending": sum(1 for t in tickets if t.status == TicketStatus.PENDING),
            "in_progress": sum(1 for t in tickets if t.status == TicketStatus.IN_PROCESS),
            "resolved": done,
            "cancelled": sum(1 for t in tickets if t.status in CANCELLED_STATUSES),
            "open": sum(1 for t in tickets if is_open(t)),
            "resolution_rate": _rate(done, total),
        }

    async def branch_stats_today(self) -> list[dict]:
        """Статистика по филиалам за сегодня (только филиалы с тикетами)"""
        tickets = await self._today_tickets()
        stats = []
        for branch in self.branches:
            counts = _counts(t for t in tickets if t.branch == branch)
            if counts["total"]:
                counts["branch"] = branch
                counts["resolution_rate"] = _rate(counts["resolved"], counts["total"])
                stats.append(counts)
        return sorted(stats, key=lambda s: s["total"], reverse=True)

    async def urgency_stats_today(self) -> dict:
        tickets = await self._today_tickets()
        return {
            level: _counts(t for t in tickets if t.urgency == level)
            for level in reversed(URGENCY_LEVELS)
        }

    async def open_issues_by_branch(self) -> list[dict]:
        """Открытые тикеты по филиалам с разбивкой по срочности"""
        open_tickets = await self._open_tickets()
        stats = []
        for branch in self.branches:
            branch_tickets = [t for t in open_tickets if t.branch == branch]
            if not branch_tickets:
                continue
            entry = {"branch": branch, "total": len(branch_tickets)}
            for level in URGENCY_LEVELS:
                entry[level] = sum(1 for t in branch_tickets if t.urgency == level)
            stats.append(entry)
        return sorted(stats, key=lambda s: s["total"], reverse=True)

    async def branch_stats(self, branch: str) -> dict:
        """Филиал: сегодня и за всё время"""
        start, end = self._today_bounds()
        tickets = await self._tickets(TicketFilter(branch=branch))
        today = [t for t in tickets if start <= t.created_at < end]
        return {
            "branch": branch,
            "today": _counts(today),
            "all_time": {"total": len(tickets), "open": sum(1 for t in tickets if is_open(t))},
        }

    async def department_stats(self, department: str) -> dict:
        """Отдел: сегодня и за всё время"""
        start, end = self._today_bounds()
        tickets = await self._tickets(TicketFilter(department=department))
        today = [t for t in tickets if start <= t.created_at < end]
        return {
            "department": department,
            "today": _counts(today),
            "all_time": {"total": len(tickets), "open": sum(1 for t in tickets if is_open(t))},
        }

    # ==================== НЕДЕЛЯ ====================

    async def weekly_issue_stats(self, days: int = 7) -> dict:
        since = self.clock() - timedelta(days=days)
        all_tickets = await self._tickets()
        week = [t for t in all_tickets if t.created_at >= since]
        done = sum(1 for t in week if t.status in DONE_STATUSES)

        return {
            "total_created": len(week),
            "total_resolved": done,
            "total_cancelled": sum(1 for t in week if t.status in CANCELLED_STATUSES),
            "total_open_this_week": sum(1 for t in week if is_open(t)),
            "total_open_overall": sum(1 for t in all_tickets if is_open(t)),
            "resolution_rate": _rate(done, len(week)),
        }

    async def weekly_branch_stats(self, days: int = 7) -> list[dict]:
        since = self.clock() - timedelta(days=days)
        stats: dict[str, dict] = {}
        for ticket in await self._tickets(TicketFilter(created_from=since)):
            entry = stats.setdefault(
                ticket.branch,
                {"branch": ticket.branch, "total": 0, "resolved": 0, "open": 0, "cancelled": 0}
            )
            entry["total"] += 1
            if ticket.status in DONE_STATUSES:
                entry["resolved"] += 1
            elif ticket.status in CANCELLED_STATUSES:
                entry["cancelled"] += 1
            else:
                entry["open"] += 1
        return sorted(stats.values(), key=lambda s: s["total"], reverse=True)

    async def weekly_staff_stats(self, days: int = 7) -> list[dict]:
        since = self.clock() - timedelta(days=days)
        async with self.session_factory() as session:
            return await TicketService(session).get_staff_activity(since)

    # ==================== ТЕКСТЫ ====================

    async def branch_metrics_line(self, branch: str) -> str:
        """Короткая сводка филиала за сегодня (для группы мониторинга)"""
        stats = (await self.branch_stats(branch))["today"]
        return (
            f"📈 {hd.quote(branch)} today: {stats['total']} total | "
            f"{stats['open']} open | {stats['resolved']} resolved"
        )

    async def format_today_stats(self) -> str:
        """/stats"""
        overall = await self.today_stats()
        by_branch = await self.branch_stats_today()
        by_urgency = await self.urgency_stats_today()

        lines = [f"📊 <b>HELPDESK STATISTICS - Today ({self._formatted_date()})</b>", "", "OVERALL:"]
        lines += _tree([
            f"Total Issues: {overall['total']}",
            f"Open: {overall['open']}",
            f"Resolved: {overall['resolved']}",
            f"Resolution Rate: {overall['resolution_rate']}%",
        ])

        if by_branch:
            lines += ["", "🏢 BY BRANCH:"]
            lines += _tree([
                f"{hd.quote(s['branch'])}: {s['total']} ({s['open']} open, {s['resolved']} resolved)"
                for s in by_branch
            ])

        urgency_lines = [
            f"{level}: {s['total']} ({s['open']} open)"
            for level, s in by_urgency.items()
            if s["total"]
        ]
        if urgency_lines:
            lines += ["", "⚠️ BY URGENCY:"]
            lines += _tree(urgency_lines)

        return "\n".join(lines)

    async def format_open_issues(self) -> str:
        """/open_issues"""
        by_branch = await self.open_issues_by_branch()
        total = sum(s["total"] for s in by_branch)

        lines = [f"📋 <b>OPEN ISSUES - {self._formatted_date()}</b>", "", f"Total Open: {total}", ""]
        if not by_branch:
            lines.append("✅ No open issues!")
            return "\n".join(lines)

        lines.append("🏢 BY BRANCH:")
        for i, stats in enumerate(by_branch):
            last = i == len(by_branch) - 1
            lines.append(f"{'└─' if last else '├─'} {hd.quote(stats['branch'])}: {stats['total']}")
            parts = [
                f"{URGENCY_ICONS[level]} {stats[level]} {level}"
                for level in reversed(URGENCY_LEVELS)
                if stats[level]
            ]
            if parts:
                lines.append(f"{'  ' if last else '│ '}  {', '.join(parts)}")

        return "\n".join(lines)

    def _scope_message(self, title: str, stats: dict) -> str:
        today, all_time = stats["today"], stats["all_time"]
        lines = [f"📊 <b>{hd.quote(title)}</b>", "", f"TODAY ({self._formatted_date()}):"]
        lines += _tree([
            f"Total Issues: {today['total']}",
            f"Open: {today['open']}",
            f"Resolved: {today['resolved']}",
        ])
        lines += ["", "ALL TIME:"]
        lines += _tree([
            f"Total Issues: {all_time['total']}",
            f"Currently Open: {all_time['open']}",
        ])
        return "\n".join(lines)

    async def format_branch_stats(self, branch: str) -> str:
        """/stats <branch>"""
        return self._scope_message(f"{branch} BRANCH STATISTICS", await self.branch_stats(branch))

    async def format_department_stats(self, department: str) -> str:
        """/stats <department>"""
        return self._scope_message(
            f"{department.upper()} DEPARTMENT STATISTICS",
            await self.department_stats(department)
        )

    async def daily_summary(self) -> str:
        """Ежедневный отчёт для группы мониторинга"""
        overall = await self.today_stats()
        by_branch = await self.branch_stats_today()
        by_urgency = await self.urgency_stats_today()
        open_by_branch = await self.open_issues_by_branch()

        lines = [f"📊 <b>DAILY HELPDESK REPORT - {self._formatted_date()}</b>", "", "OVERALL PERFORMANCE"]
        lines += _tree([
            f"Total Issues: {overall['total']}",
            f"Resolved/Confirmed: {overall['resolved']} ({overall['resolution_rate']}% resolution rate)",
            f"In Progress: {overall['in_progress']}",
            f"Pending: {overall['pending']}",
        ])

        if by_branch:
            lines += ["", "🏢 BRANCH BREAKDOWN"]
            for stats in by_branch:
                lines.append(f"{hd.quote(stats['branch'])}: {stats['total']} issues")
                lines.append(f"   Resolution: {stats['resolution_rate']}%  |  Open: {stats['open']}")

        critical_open = by_urgency.get("Critical", {}).get("open", 0)
        if critical_open:
            lines += ["", "⚠️ ALERTS", f"🔴 {critical_open} CRITICAL issue{'s' if critical_open > 1 else ''} still open"]

        if open_by_branch:
            lines += ["", "OPEN ISSUES (Carried Over)"]
            lines += [f"{hd.quote(s['branch'])}: {s['total']} open" for s in open_by_branch]

        return "\n".join(lines)

    def _week_header(self, title: str, days: int) -> list[str]:
        end = self.clock()
        start = end - timedelta(days=days)
        return [f"📊 <b>{hd.quote(title)}</b>", f"{self._formatted_date(start)} — {self._formatted_date(end)}", ""]

    async def weekly_staff_report(self, days: int = 7) -> str:
        """Еженедельный отчёт по сотрудникам для группы мониторинга"""
        issues = await self.weekly_issue_stats(days)
        by_branch = await self.weekly_branch_stats(days)
        staff = await self.weekly_staff_stats(days)

        lines = self._week_header("WEEKLY HELPDESK REPORT", days)
        lines.append("OVERALL SUMMARY")
        lines += _tree([
            f"Total Issues Created: {issues['total_created']}",
            f"Resolved/Confirmed: {issues['total_resolved']}",
            f"Cancelled: {issues['total_cancelled']}",
            f"Still Open (this week): {issues['total_open_this_week']}",
            f"Total Open (all time): {issues['total_open_overall']}",
            f"Resolution Rate: {issues['resolution_rate']}%",
        ])

        if by_branch:
            lines += ["", "🏢 BY BRANCH"]
            lines += _tree([
                f"{hd.quote(s['branch'])}: {s['total']} total | {s['resolved']} resolved | "
                f"{s['open']} open | {_rate(s['resolved'], s['total'])}%"
                for s in by_branch
            ])

        lines += ["", "👥 STAFF PERFORMANCE"]
        if not staff:
            lines.append("No staff activity recorded this week.")
        for i, member in enumerate(staff):
            last = i == len(staff) - 1
            name = hd.quote(member["actor_name"] or member["actor_id"] or "Unknown")
            lines.append(f"{'└─' if last else '├─'} {name}")
            lines.append(
                f"{'  ' if last else '│ '}  Resolved: {member['resolved']} | "
                f"In Process: {member['in_process']} | Cancelled: {member['cancelled']} | "
                f"Total Actions: {member['total_actions']}"
            )

        return "\n".join(lines)

    async def branch_weekly_report(self, branch: str, days: int = 7) -> str:
        """Еженедельный отчёт для группы филиала"""
        since = self.clock() - timedelta(days=days)
        tickets = await self._tickets(TicketFilter(branch=branch, created_from=since))
        total = len(tickets)
        resolved = sum(1 for t in tickets if t.status in DONE_STATUSES)

        lines = self._week_header(f"WEEKLY REPORT — {branch} BRANCH", days)
        lines.append("SUMMARY")
        lines += _tree([
            f"Total Issues: {total}",
            f"Resolved: {resolved}",
            f"Cancelled: {sum(1 for t in tickets if t.status in CANCELLED_STATUSES)}",
            f"Still Open: {sum(1 for t in tickets if is_open(t))}",
            f"Resolution Rate: {_rate(resolved, total)}%",
        ])

        # Только сотрудники, которые меняли статус тикетов этого филиала
        handlers = {t.assigned_to for t in tickets if t.assigned_to}
        staff = [m for m in await self.weekly_staff_stats(days) if m["actor_id"] in handlers]
        if staff:
            lines += ["", "👥 STAFF ACTIVITY"]
            lines += _tree([
                f"{hd.quote(m['actor_name'] or m['actor_id'])}: "
                f"{m['resolved']} resolved, {m['total_actions']} actions"
                for m in staff
            ])

        return "\n".join(lines)
