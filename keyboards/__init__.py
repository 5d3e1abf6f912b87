from keyboards.callbacks import CancelCallback, ConfirmCallback, StatusCallback
from keyboards.staff_kb import StaffKeyboards
from keyboards.user_kb import UserKeyboards

__all__ = ["CancelCallback", "ConfirmCallback", "StatusCallback", "StaffKeyboards", "UserKeyboards"]
