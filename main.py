"""
Helpdesk Ticket Bot
Тикеты сотрудников филиалов: мастер в личке, статусы в группах поддержки
"""
import asyncio
import logging
import sys
from datetime import timedelta

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage

import config
from database import Database
from handlers import common_router, support_router, user_router
from services.conversation_store import ConversationStore
from services.permissions import PermissionsManager
from services.remarks_queue import RemarksQueueCoordinator
from services.routing import RoutingEngine
from services.scheduler import DigestWindow, SchedulerPolicies
from services.stats_service import StatsService
from services.status_machine import StatusStateMachine
from services.transport import TelegramTransport
from services.wizard import TicketWizard
from services.workflow import TicketWorkflow
from utils.middlewares import UserRegistryMiddleware


logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


async def on_startup(bot: Bot, db: Database, scheduler: SchedulerPolicies):
    """Действия при запуске"""
    logger.info("Инициализация базы данных...")
    await db.init_db()
    logger.info("База данных инициализирована")

    bot_info = await bot.get_me()
    logger.info(f"Бот запущен: @{bot_info.username}")
    logger.info(f"Branches: {', '.join(config.BRANCHES)}")
    logger.info(f"SUPPORT_STAFF_IDS: {config.SUPPORT_STAFF_IDS}")

    # Проверяем доступ к группам поддержки
    groups = dict(config.BRANCH_GROUPS)
    if config.SUPPORT_GROUP_ID:
        groups["fallback"] = config.SUPPORT_GROUP_ID
    if config.ENABLE_CENTRAL_MONITORING and config.CENTRAL_MONITORING_GROUP:
        groups["monitoring"] = config.CENTRAL_MONITORING_GROUP
    for name, chat_id in groups.items():
        try:
            chat = await bot.get_chat(chat_id)
            logger.info(f"{name} group: {chat.title} (ID: {chat.id})")
        except Exception as e:
            logger.error(f"Cannot access {name} group {chat_id}: {e}")

    scheduler.start()


async def on_shutdown(db: Database, scheduler: SchedulerPolicies):
    """Действия при остановке"""
    logger.info("Остановка бота...")
    scheduler.shutdown()
    await db.close()
    logger.info("Бот остановлен")


def build_dispatcher(bot: Bot, db: Database) -> Dispatcher:
    """Собрать сервисы и зарегистрировать их в dispatcher"""
    permissions = PermissionsManager(config.SUPPORT_STAFF_IDS, config.EMPLOYEE_IDS)
    transport = TelegramTransport(bot)
    stats = StatsService(db.session_factory, config.BRANCHES)

    machine = StatusStateMachine(db.session_factory, permissions)
    routing = RoutingEngine(
        transport,
        config.BRANCH_GROUPS,
        fallback_group=config.SUPPORT_GROUP_ID,
        monitoring_group=config.CENTRAL_MONITORING_GROUP,
        monitoring_enabled=config.ENABLE_CENTRAL_MONITORING,
        stats=stats,
        auto_confirm_days=config.AUTO_CONFIRM_DAYS
    )
    machine.add_listener(routing.on_status_changed)

    conversations = ConversationStore(timedelta(minutes=config.SESSION_TIMEOUT_MINUTES))
    remarks = RemarksQueueCoordinator(
        machine, transport, max_age=timedelta(minutes=config.REMARKS_MAX_AGE_MINUTES)
    )
    wizard = TicketWizard(conversations, machine, routing, transport, permissions, config.BRANCHES)
    workflow = TicketWorkflow(machine, remarks, transport, permissions)

    scheduler = SchedulerPolicies(
        conversations,
        remarks,
        machine,
        db.session_factory,
        routing,
        stats,
        branches=config.BRANCHES,
        auto_confirm_days=config.AUTO_CONFIRM_DAYS,
        daily=DigestWindow("daily", config.DAILY_REPORT_HOUR, config.DAILY_REPORT_MINUTE),
        weekly=DigestWindow("weekly", config.WEEKLY_REPORT_HOUR, weekday=config.WEEKLY_REPORT_DAY)
    )

    dp = Dispatcher(
        storage=MemoryStorage(),
        db=db,
        permissions=permissions,
        stats=stats,
        routing=routing,
        remarks=remarks,
        wizard=wizard,
        workflow=workflow,
        scheduler=scheduler
    )

    registry = UserRegistryMiddleware(db.session_factory, permissions)
    dp.message.outer_middleware(registry)
    dp.callback_query.outer_middleware(registry)

    # Порядок важен: группа мониторинга удаляет всё, включая команды
    dp.include_router(support_router)
    dp.include_router(common_router)
    dp.include_router(user_router)

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)
    return dp


async def main():
    """Главная функция"""

    if not config.BOT_TOKEN:
        logger.error("BOT_TOKEN не установлен! Создайте файл .env с токеном бота.")
        sys.exit(1)

    if not config.BRANCH_GROUPS and not config.SUPPORT_GROUP_ID:
        logger.warning("No support groups configured: new tickets will not be delivered")

    bot = Bot(
        token=config.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )
    db = Database(config.DATABASE_URL)
    dp = build_dispatcher(bot, db)

    logger.info("Запуск бота...")
    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await bot.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Бот остановлен пользователем")
