"""
Shared fixtures: in-memory database, recording transport, controllable clock
"""
from datetime import datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio
from aiogram.exceptions import TelegramNetworkError
from aiogram.methods import SendMessage
from sqlalchemy.pool import StaticPool

from database import Database
from services.conversation_store import ConversationStore
from services.permissions import PermissionsManager
from services.remarks_queue import RemarksQueueCoordinator
from services.routing import RoutingEngine
from services.stats_service import StatsService
from services.status_machine import StatusStateMachine
from services.ticket_service import TicketDraft
from services.wizard import TicketWizard
from services.workflow import TicketWorkflow

STAFF_ID = "1001"
OTHER_STAFF_ID = "1002"
EMPLOYEE_ID = "2001"
OTHER_EMPLOYEE_ID = "2002"

BRANCHES = ["JHQ", "TRK", "GS", "IPIL"]
JHQ_GROUP = "-100111"
FALLBACK_GROUP = "-100999"
MONITORING_GROUP = "-100555"


class FakeClock:
    """Clock whose time only moves when told to"""

    def __init__(self, start: datetime = datetime(2026, 3, 10, 10, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeTransport:
    """Records every outbound call instead of talking to Telegram"""

    def __init__(self):
        self.sent: list[dict] = []
        self.edits: list[dict] = []
        self.deleted: list[tuple] = []
        self.fail_chats: set[str] = set()
        self._next_id = 100

    def _record(self, kind: str, chat_id, text: str, markup=None) -> int:
        if str(chat_id) in self.fail_chats:
            raise TelegramNetworkError(SendMessage(chat_id=chat_id, text=text), "unreachable")
        self._next_id += 1
        self.sent.append({
            "kind": kind,
            "chat_id": str(chat_id),
            "text": text,
            "markup": markup,
            "message_id": self._next_id
        })
        return self._next_id

    async def send_direct(self, chat_id, text: str) -> int:
        return self._record("direct", chat_id, text)

    async def send_with_buttons(self, chat_id, text: str, markup) -> int:
        return self._record("buttons", chat_id, text, markup)

    async def send_keyboard(self, chat_id, text: str, markup) -> int:
        return self._record("keyboard", chat_id, text, markup)

    async def edit_message(self, chat_id, message_id: int, text: str, markup=None) -> bool:
        self.edits.append({"chat_id": str(chat_id), "message_id": message_id, "text": text, "markup": markup})
        return True

    async def delete_message(self, chat_id, message_id: int) -> bool:
        self.deleted.append((str(chat_id), message_id))
        return True

    def to(self, chat_id) -> list[dict]:
        return [m for m in self.sent if m["chat_id"] == str(chat_id)]

    def texts(self, chat_id) -> list[str]:
        return [m["text"] for m in self.to(chat_id)]

    def last(self, chat_id) -> Optional[dict]:
        sent = self.to(chat_id)
        return sent[-1] if sent else None

    def clear(self):
        self.sent.clear()
        self.edits.clear()
        self.deleted.clear()


def make_draft(creator_id: str = EMPLOYEE_ID, branch: str = "JHQ", **overrides) -> TicketDraft:
    fields = {
        "creator_id": creator_id,
        "creator_name": "Maria Santos",
        "branch": branch,
        "department": "Sales",
        "category": "Network Problem",
        "urgency": "High",
        "description": "Cannot connect to the POS server",
        "contact_person": "Maria Santos",
    }
    fields.update(overrides)
    return TicketDraft(**fields)


@pytest_asyncio.fixture
async def db():
    database = Database("sqlite+aiosqlite://", poolclass=StaticPool)
    await database.init_db()
    yield database
    await database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def permissions():
    return PermissionsManager(support_staff_ids=[STAFF_ID, OTHER_STAFF_ID])


@pytest.fixture
def machine(db, permissions, clock):
    return StatusStateMachine(db.session_factory, permissions, clock=clock)


@pytest.fixture
def stats(db, clock):
    return StatsService(db.session_factory, BRANCHES, clock=clock)


@pytest.fixture
def routing(transport, stats):
    return RoutingEngine(
        transport,
        {"JHQ": JHQ_GROUP},
        fallback_group=FALLBACK_GROUP,
        monitoring_group=MONITORING_GROUP,
        monitoring_enabled=True,
        stats=stats
    )


@pytest.fixture
def remarks(machine, transport, clock):
    return RemarksQueueCoordinator(machine, transport, max_age=timedelta(minutes=15), clock=clock)


@pytest.fixture
def conversations(clock):
    return ConversationStore(timedelta(minutes=30), clock=clock)


@pytest.fixture
def wizard(conversations, machine, routing, transport, permissions):
    return TicketWizard(conversations, machine, routing, transport, permissions, BRANCHES)


@pytest.fixture
def workflow(machine, remarks, transport, permissions, clock):
    return TicketWorkflow(machine, remarks, transport, permissions, clock=clock)


@pytest.fixture
def wired_machine(machine, routing):
    """State machine with routing notifications attached"""
    machine.add_listener(routing.on_status_changed)
    return machine
