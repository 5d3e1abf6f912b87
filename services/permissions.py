"""
Права доступа (статический список из конфигурации)
"""
from typing import Iterable

from services.exceptions import NotAuthorized


class PermissionsManager:
    """Кто может создавать тикеты, а кто - менять статус"""

    def __init__(self, support_staff_ids: Iterable = (), employee_ids: Iterable = ()):
        self.support_staff_ids = {str(x) for x in support_staff_ids}
        self.employee_ids = {str(x) for x in employee_ids}

    @property
    def allow_all_employees(self) -> bool:
        return not self.employee_ids

    def is_support_staff(self, user_id) -> bool:
        return str(user_id) in self.support_staff_ids

    def is_authorized_employee(self, user_id) -> bool:
        return self.allow_all_employees or str(user_id) in self.employee_ids

    def can_create_issue(self, user_id) -> bool:
        return self.is_authorized_employee(user_id) or self.is_support_staff(user_id)

    def can_update_status(self, user_id) -> bool:
        return self.is_support_staff(user_id)

    def get_user_role(self, user_id) -> str:
        if self.is_support_staff(user_id):
            return "Support Staff"
        if self.is_authorized_employee(user_id):
            return "Employee"
        return "Unauthorized"

    def require(self, user_id, action: str):
        """Бросает NotAuthorized, если действие ('create' / 'update') запрещено"""
        if action == "create":
            if not self.can_create_issue(user_id):
                raise NotAuthorized(
                    "⛔ You are not authorized to create issues. Please contact your administrator."
                )
        elif action == "update":
            if not self.can_update_status(user_id):
                raise NotAuthorized()
        else:
            raise NotAuthorized("⛔ Invalid action.")
