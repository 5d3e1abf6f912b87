"""
Конфигурация бота
Создайте файл .env с переменными:
    BOT_TOKEN=your_telegram_bot_token_here
    SUPPORT_GROUP_ID=-1001234567890
    SUPPORT_GROUP_JHQ=-1001111111111
    CENTRAL_MONITORING_GROUP=-1009876543210
    ENABLE_CENTRAL_MONITORING=true
    SUPPORT_STAFF_IDS=123456789,987654321
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _ids(name: str) -> list[str]:
    return [x.strip() for x in os.getenv(name, "").split(",") if x.strip()]


# Токен бота
BOT_TOKEN = os.getenv("BOT_TOKEN", "")

# Общая группа поддержки (используется, если для филиала нет своей группы)
SUPPORT_GROUP_ID = os.getenv("SUPPORT_GROUP_ID", "")

# Филиалы - ключ маршрутизации
BRANCHES: list[str] = [
    x.strip().upper()
    for x in os.getenv("BRANCHES", "JHQ,TRK,GS,IPIL").split(",")
    if x.strip()
]

# Группа поддержки каждого филиала: SUPPORT_GROUP_<BRANCH>
BRANCH_GROUPS: dict[str, str] = {
    branch: os.getenv(f"SUPPORT_GROUP_{branch}", "")
    for branch in BRANCHES
    if os.getenv(f"SUPPORT_GROUP_{branch}")
}

# Центральная группа мониторинга (только чтение)
CENTRAL_MONITORING_GROUP = os.getenv("CENTRAL_MONITORING_GROUP", "")
ENABLE_CENTRAL_MONITORING = os.getenv("ENABLE_CENTRAL_MONITORING", "false").lower() == "true"

# ID сотрудников поддержки и сотрудников, которым разрешено создавать тикеты
# (пустой EMPLOYEE_IDS - тикеты может создавать любой)
SUPPORT_STAFF_IDS: list[str] = _ids("SUPPORT_STAFF_IDS")
EMPLOYEE_IDS: list[str] = _ids("EMPLOYEE_IDS")

# Таймауты
SESSION_TIMEOUT_MINUTES = int(os.getenv("SESSION_TIMEOUT_MINUTES", "30"))
REMARKS_MAX_AGE_MINUTES = int(os.getenv("REMARKS_MAX_AGE_MINUTES", "15"))
AUTO_CONFIRM_DAYS = int(os.getenv("AUTO_CONFIRM_DAYS", "7"))

# Отчёты
DAILY_REPORT_HOUR = int(os.getenv("DAILY_REPORT_HOUR", "18"))
DAILY_REPORT_MINUTE = int(os.getenv("DAILY_REPORT_MINUTE", "0"))
WEEKLY_REPORT_DAY = int(os.getenv("WEEKLY_REPORT_DAY", "0"))  # 0 = понедельник
WEEKLY_REPORT_HOUR = int(os.getenv("WEEKLY_REPORT_HOUR", "9"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Путь к базе данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///helpdesk.db")
