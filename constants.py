"""
Варианты ответов мастера создания тикета
"""

DEPARTMENTS = ["Sales", "Accounting", "Branch", "HR", "Operations", "Other"]

CATEGORIES = [
    "System Issue",
    "Network Problem",
    "Hardware Issue",
    "Software Issue",
    "Access/Permission",
    "Other",
]

URGENCY_LEVELS = ["Low", "Medium", "High", "Critical"]

# "Связаться со мной" на шаге контакта
CONTACT_SELF = "ME"

CONFIRM_YES = "✅ Yes, Submit"
CONFIRM_NO = "❌ No, Cancel"

# Действия, выполненные ботом (автоподтверждение, создание)
SYSTEM_ACTOR = "SYSTEM"

TICKET_ID_PATTERN = r"ISSUE-\d{8}-\d{4}"
