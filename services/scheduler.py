"""
Плановые задачи (APScheduler)

- очистка просроченных диалогов мастера;
- очистка устаревших ожидающих комментариев;
- автоподтверждение решённых тикетов без ответа автора;
- ежедневный и еженедельный отчёты.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from aiogram.exceptions import TelegramAPIError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from constants import SYSTEM_ACTOR
from database.models import TicketStatus
from services.conversation_store import ConversationStore
from services.exceptions import HelpdeskError
from services.remarks_queue import RemarksQueueCoordinator
from services.routing import RoutingEngine
from services.stats_service import StatsService
from services.status_machine import StatusStateMachine
from services.ticket_service import TicketService

logger = logging.getLogger(__name__)


class DigestWindow:
    """
    Окно отправки отчёта

    Отчёт считается "должным", если текущее время попало в
    [запланированное время; + grace) и отчёт за это окно ещё не отправлялся.
    Ключ окна - дата (ежедневный) или ISO-неделя (еженедельный).
    """

    def __init__(
        self,
        name: str,
        hour: int,
        minute: int = 0,
        weekday: Optional[int] = None,
        grace: timedelta = timedelta(minutes=30)
    ):
        self.name = name
        self.hour = hour
        self.minute = minute
        self.weekday = weekday
        self.grace = grace
        self.last_key: Optional[str] = None

    def window_key(self, now: datetime) -> str:
        if self.weekday is None:
            return now.date().isoformat()
        year, week, _ = now.isocalendar()
        return f"{year}-W{week:02d}"

    def due(self, now: datetime) -> Optional[str]:
        """Ключ окна, если отчёт пора отправить, иначе None"""
        if self.weekday is not None and now.weekday() != self.weekday:
            return None

        scheduled = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if not scheduled <= now < scheduled + self.grace:
            return None

        key = self.window_key(now)
        return None if key == self.last_key else key

    def mark_sent(self, key: str):
        self.last_key = key


class SchedulerPolicies:
    """Регистрация и выполнение плановых задач"""

    def __init__(
        self,
        conversations: ConversationStore,
        remarks: RemarksQueueCoordinator,
        machine: StatusStateMachine,
        session_factory: async_sessionmaker[AsyncSession],
        routing: RoutingEngine,
        stats: StatsService,
        branches: Iterable[str] = (),
        auto_confirm_days: int = 7,
        daily: Optional[DigestWindow] = None,
        weekly: Optional[DigestWindow] = None,
        clock: Callable[[], datetime] = datetime.now,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.conversations = conversations
        self.remarks = remarks
        self.machine = machine
        self.session_factory = session_factory
        self.routing = routing
        self.stats = stats
        self.branches = list(branches)
        self.auto_confirm_days = auto_confirm_days
        self.daily = daily or DigestWindow("daily", hour=18)
        self.weekly = weekly or DigestWindow("weekly", hour=9, weekday=0)
        self.clock = clock
        self.scheduler = scheduler or AsyncIOScheduler()

    # ==================== ЗАПУСК ====================

    def start(self):
        """Зарегистрировать задачи и запустить планировщик"""
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self.scheduler.add_job(
            self.sweep_sessions, "interval", minutes=5, id="sweep_sessions", **job_defaults
        )
        self.scheduler.add_job(
            self.sweep_remarks, "interval", minutes=10, id="sweep_remarks", **job_defaults
        )
        self.scheduler.add_job(
            self.auto_confirm, "interval", hours=1, id="auto_confirm", **job_defaults
        )
        self.scheduler.add_job(
            self.auto_confirm,
            "date",
            run_date=datetime.now() + timedelta(seconds=30),
            id="auto_confirm_startup",
            **job_defaults
        )
        self.scheduler.add_job(
            self.check_digests, "interval", minutes=1, id="check_digests", **job_defaults
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started (auto-confirm after {self.auto_confirm_days} days, "
            f"daily report {self.daily.hour:02d}:{self.daily.minute:02d}, "
            f"weekly report day {self.weekly.weekday} {self.weekly.hour:02d}:{self.weekly.minute:02d})"
        )

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    # ==================== ОЧИСТКА ====================

    async def sweep_sessions(self) -> int:
        return self.conversations.sweep()

    async def sweep_remarks(self) -> int:
        return self.remarks.sweep()

    # ==================== АВТОПОДТВЕРЖДЕНИЕ ====================

    async def auto_confirm(self) -> list[str]:
        """Подтвердить решённые тикеты, на которые автор не ответил. Возвращает ID подтверждённых"""
        cutoff = self.clock() - timedelta(days=self.auto_confirm_days)
        try:
            async with self.session_factory() as session:
                tickets = await TicketService(session).get_unconfirmed_resolved(cutoff)
        except Exception as e:
            logger.error(f"Error loading tickets for auto-confirmation: {e}", exc_info=True)
            return []

        confirmed = []
        for ticket in tickets:
            try:
                result = await self.machine.transition(
                    ticket.ticket_id,
                    TicketStatus.CONFIRMED,
                    SYSTEM_ACTOR,
                    SYSTEM_ACTOR
                )
            except HelpdeskError as e:
                # Автор успел ответить или тикет уже подтверждён
                logger.info(f"Skipped auto-confirmation of {ticket.ticket_id}: {e.message}")
                continue

            if result.changed:
                confirmed.append(ticket.ticket_id)

        if confirmed:
            logger.info(f"Auto-confirmed {len(confirmed)} tickets: {', '.join(confirmed)}")
        return confirmed

    # ==================== ОТЧЁТЫ ====================

    async def check_digests(self) -> list[str]:
        """Отправить отчёты, у которых наступило окно. Возвращает имена отправленных"""
        now = self.clock()
        sent = []

        key = self.daily.due(now)
        if key is not None and await self.send_daily_report():
            self.daily.mark_sent(key)
            sent.append(self.daily.name)

        key = self.weekly.due(now)
        if key is not None and await self.send_weekly_reports():
            self.weekly.mark_sent(key)
            sent.append(self.weekly.name)

        return sent

    async def send_daily_report(self) -> bool:
        """Ежедневный отчёт в группу мониторинга"""
        if not self.routing.monitoring_active:
            logger.info("Daily report skipped: central monitoring is disabled")
            return True

        try:
            text = await self.stats.daily_summary()
            await self.routing.transport.send_direct(self.routing.monitoring_group, text)
        except TelegramAPIError as e:
            logger.error(f"Failed to send daily report: {e}")
            return False
        except Exception as e:
            logger.error(f"Error building daily report: {e}", exc_info=True)
            return False

        logger.info("Daily report sent to monitoring group")
        return True

    async def send_weekly_reports(self) -> bool:
        """Еженедельный отчёт в мониторинг и отчёт по филиалу в каждую группу филиала"""
        delivered = True

        if self.routing.monitoring_active:
            try:
                text = await self.stats.weekly_staff_report()
                await self.routing.transport.send_direct(self.routing.monitoring_group, text)
                logger.info("Weekly report sent to monitoring group")
            except TelegramAPIError as e:
                logger.error(f"Failed to send weekly report: {e}")
                delivered = False
            except Exception as e:
                logger.error(f"Error building weekly report: {e}", exc_info=True)
                delivered = False

        for branch in self.branches:
            group = self.routing.branch_groups.get(branch)
            if not group:
                continue
            try:
                text = await self.stats.branch_weekly_report(branch)
                await self.routing.transport.send_direct(group, text)
                logger.info(f"Weekly report sent to {branch} group")
            except TelegramAPIError as e:
                logger.error(f"Failed to send weekly report to {branch} group: {e}")
            except Exception as e:
                logger.error(f"Error building weekly report for {branch}: {e}", exc_info=True)

        return delivered
