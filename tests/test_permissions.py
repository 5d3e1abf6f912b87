"""
Tests for the static permissions list
"""
import pytest

from services.exceptions import NotAuthorized
from services.permissions import PermissionsManager


class TestPermissions:

    def test_open_employee_list(self):
        """No employee list configured: everyone may create tickets"""
        permissions = PermissionsManager(support_staff_ids=[1001])

        assert permissions.can_create_issue("42")
        assert not permissions.can_update_status("42")
        assert permissions.get_user_role("42") == "Employee"

    def test_restricted_employee_list(self):
        permissions = PermissionsManager(support_staff_ids=["1001"], employee_ids=["2001"])

        assert permissions.can_create_issue("2001")
        assert permissions.can_create_issue("1001")
        assert not permissions.can_create_issue("3001")
        assert permissions.get_user_role("3001") == "Unauthorized"

    def test_ids_compared_as_strings(self):
        permissions = PermissionsManager(support_staff_ids=[1001])

        assert permissions.is_support_staff("1001")
        assert permissions.is_support_staff(1001)
        assert permissions.get_user_role(1001) == "Support Staff"

    def test_require(self):
        permissions = PermissionsManager(support_staff_ids=["1001"], employee_ids=["2001"])

        permissions.require("1001", "update")
        permissions.require("2001", "create")
        with pytest.raises(NotAuthorized):
            permissions.require("2001", "update")
        with pytest.raises(NotAuthorized) as exc:
            permissions.require("3001", "create")
        assert "not authorized to create" in exc.value.message
        with pytest.raises(NotAuthorized):
            permissions.require("1001", "delete")
