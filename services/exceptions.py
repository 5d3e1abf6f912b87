"""
Ошибки движка тикетов

Каждая ошибка несёт текст, который можно показать пользователю как есть.
"""


class HelpdeskError(Exception):
    """Базовая ошибка"""

    default_message = "❌ Something went wrong. Please try again later."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(HelpdeskError):
    default_message = "❌ Invalid input."


class InvalidTransition(ValidationError):
    def __init__(self, ticket_id: str, current, requested):
        self.ticket_id = ticket_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"❌ Issue {ticket_id} cannot move from {current.label} to {requested.label}."
        )


class RemarksRequired(ValidationError):
    def __init__(self, ticket_id: str, status):
        self.ticket_id = ticket_id
        self.status = status
        super().__init__(f"📝 Remarks are required to set {ticket_id} to {status.label}.")


class NotAuthorized(HelpdeskError):
    default_message = "⛔ Only support staff can update issue status."


class NotTicketOwner(NotAuthorized):
    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"❌ Only the creator of {ticket_id} can do this.")


class TicketNotFound(HelpdeskError):
    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"❌ Issue not found: {ticket_id}")


class AlreadyTerminal(HelpdeskError):
    def __init__(self, ticket_id: str, status):
        self.ticket_id = ticket_id
        self.status = status
        super().__init__(
            f"ℹ️ Issue {ticket_id} is already {status.label}.\nNo further updates allowed."
        )


class OwnershipConflict(HelpdeskError):
    def __init__(self, ticket_id: str, owner_name: str | None):
        self.ticket_id = ticket_id
        self.owner_name = owner_name or "another staff member"
        super().__init__(
            f"❌ This ticket is assigned to {self.owner_name}. Only they can update it."
        )


class ConfigurationError(HelpdeskError):
    default_message = "⚠️ No support group is configured for this ticket."


class PersistenceError(HelpdeskError):
    default_message = "❌ Failed to save changes. Please try again."


class NoActiveConversation(HelpdeskError):
    default_message = "❌ Session expired. Please start over."
