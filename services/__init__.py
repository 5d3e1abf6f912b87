from services.exceptions import HelpdeskError
from services.permissions import PermissionsManager
from services.ticket_service import TicketDraft, TicketFilter, TicketService
from services.status_machine import StatusStateMachine, TransitionResult
from services.conversation_store import ConversationStore
from services.transport import TelegramTransport
from services.stats_service import StatsService
from services.routing import RoutingEngine
from services.remarks_queue import RemarksQueueCoordinator
from services.wizard import TicketWizard
from services.workflow import TicketWorkflow
from services.scheduler import DigestWindow, SchedulerPolicies

__all__ = [
    "HelpdeskError",
    "PermissionsManager",
    "TicketDraft",
    "TicketFilter",
    "TicketService",
    "StatusStateMachine",
    "TransitionResult",
    "ConversationStore",
    "TelegramTransport",
    "StatsService",
    "RoutingEngine",
    "RemarksQueueCoordinator",
    "TicketWizard",
    "TicketWorkflow",
    "DigestWindow",
    "SchedulerPolicies",
]
