"""
Tests for the ticket creation wizard
"""
from unittest.mock import AsyncMock

import pytest

from constants import CONFIRM_NO, CONFIRM_YES
from database.models import TicketStatus
from services.exceptions import NoActiveConversation, NotAuthorized, PersistenceError
from services.permissions import PermissionsManager
from services.wizard import TicketWizard, parse_confirmation
from states import TicketForm
from tests.conftest import BRANCHES, EMPLOYEE_ID, JHQ_GROUP, MONITORING_GROUP

ANSWERS = ["jhq", "Sales", "Network Problem", "High", "Printer on floor 2 is offline", "ME"]


async def say(wizard, text, user_id=EMPLOYEE_ID):
    return await wizard.handle_message(user_id, user_id, "Maria Santos", text)


async def fill_form(wizard):
    await say(wizard, "hello")
    for answer in ANSWERS:
        await say(wizard, answer)


class TestParseConfirmation:
    """Yes / no detection at the confirmation step"""

    def test_buttons(self):
        assert parse_confirmation(CONFIRM_YES) is True
        assert parse_confirmation(CONFIRM_NO) is False

    def test_free_text(self):
        assert parse_confirmation("yes please") is True
        assert parse_confirmation("No") is False

    def test_ambiguous(self):
        assert parse_confirmation("yes and no") is None
        assert parse_confirmation("maybe") is None
        assert parse_confirmation("yesterday") is None


class TestWizardSteps:
    """Step-by-step validation"""

    @pytest.mark.asyncio
    async def test_first_message_asks_branch(self, wizard, conversations, transport):
        await say(wizard, "my printer is broken")

        conversation = conversations.get(EMPLOYEE_ID)
        assert conversation.current_step == TicketForm.BRANCH
        sent = transport.last(EMPLOYEE_ID)
        assert sent["kind"] == "keyboard"
        buttons = [b.text for row in sent["markup"].keyboard for b in row]
        assert buttons == BRANCHES

    @pytest.mark.asyncio
    async def test_invalid_branch_keeps_step(self, wizard, conversations, transport):
        """Unknown branch is rejected and nothing is recorded"""
        await say(wizard, "hello")
        await say(wizard, "Atlantis")

        conversation = conversations.get(EMPLOYEE_ID)
        assert conversation.current_step == TicketForm.BRANCH
        assert conversation.collected_fields == {}
        assert "Invalid selection" in transport.last(EMPLOYEE_ID)["text"]

    @pytest.mark.asyncio
    async def test_branch_is_case_insensitive(self, wizard, conversations):
        await say(wizard, "hello")
        await say(wizard, "trk")

        conversation = conversations.get(EMPLOYEE_ID)
        assert conversation.collected_fields["branch"] == "TRK"
        assert conversation.current_step == TicketForm.DEPARTMENT

    @pytest.mark.asyncio
    async def test_reaches_confirmation_with_summary(self, wizard, conversations, transport):
        await fill_form(wizard)

        conversation = conversations.get(EMPLOYEE_ID)
        assert conversation.current_step == TicketForm.CONFIRMATION
        assert conversation.collected_fields["contact_person"] == "Maria Santos"
        assert "ISSUE SUMMARY" in transport.last(EMPLOYEE_ID)["text"]

    @pytest.mark.asyncio
    async def test_unclear_confirmation_reasks(self, wizard, conversations, transport):
        await fill_form(wizard)
        await say(wizard, "hmm")

        assert conversations.get(EMPLOYEE_ID).current_step == TicketForm.CONFIRMATION
        assert "Please click one of the buttons" in transport.last(EMPLOYEE_ID)["text"]


class TestWizardOutcome:
    """Submission, cancellation and expiry"""

    @pytest.mark.asyncio
    async def test_submit_creates_and_routes(self, wizard, conversations, machine, transport):
        await fill_form(wizard)
        ticket = await say(wizard, CONFIRM_YES)

        assert ticket is not None
        assert ticket.status == TicketStatus.PENDING
        assert ticket.branch == "JHQ"
        assert ticket.contact_person == "Maria Santos"
        assert conversations.get(EMPLOYEE_ID) is None

        stored = await machine.get_ticket(ticket.ticket_id)
        assert stored.description == "Printer on floor 2 is offline"

        assert "ISSUE SUBMITTED" in transport.last(EMPLOYEE_ID)["text"]
        assert "NEW HELPDESK ISSUE" in transport.last(JHQ_GROUP)["text"]
        assert transport.last(JHQ_GROUP)["kind"] == "buttons"
        assert "MONITORING COPY" in transport.last(MONITORING_GROUP)["text"]

    @pytest.mark.asyncio
    async def test_failed_save_keeps_confirmation(self, wizard, conversations, machine, transport, monkeypatch):
        """Ticket not saved: the draft stays at confirmation so Yes can be sent again"""
        await fill_form(wizard)
        monkeypatch.setattr(machine, "create_ticket", AsyncMock(side_effect=PersistenceError()))

        assert await say(wizard, CONFIRM_YES) is None

        conversation = conversations.get(EMPLOYEE_ID)
        assert conversation.current_step == TicketForm.CONFIRMATION
        assert conversation.collected_fields["branch"] == "JHQ"
        assert transport.last(EMPLOYEE_ID)["text"] == PersistenceError.default_message
        assert transport.to(JHQ_GROUP) == []

        monkeypatch.undo()
        ticket = await say(wizard, CONFIRM_YES)

        assert ticket is not None
        assert conversations.get(EMPLOYEE_ID) is None

    @pytest.mark.asyncio
    async def test_no_discards_draft(self, wizard, conversations, transport):
        await fill_form(wizard)
        ticket = await say(wizard, CONFIRM_NO)

        assert ticket is None
        assert conversations.get(EMPLOYEE_ID) is None
        assert transport.to(JHQ_GROUP) == []

    @pytest.mark.asyncio
    async def test_cancel_command(self, wizard, conversations):
        await say(wizard, "hello")
        await wizard.cancel(EMPLOYEE_ID, EMPLOYEE_ID)

        assert conversations.get(EMPLOYEE_ID) is None
        with pytest.raises(NoActiveConversation):
            await wizard.cancel(EMPLOYEE_ID, EMPLOYEE_ID)

    @pytest.mark.asyncio
    async def test_idle_conversation_restarts(self, wizard, conversations, clock):
        """After the idle timeout the next message starts over"""
        await say(wizard, "hello")
        await say(wizard, "JHQ")
        clock.advance(minutes=31)

        await say(wizard, "Sales")

        conversation = conversations.get(EMPLOYEE_ID)
        assert conversation.current_step == TicketForm.BRANCH
        assert conversation.collected_fields == {}

    @pytest.mark.asyncio
    async def test_start_repeats_current_question(self, wizard, conversations, transport):
        await say(wizard, "hello")
        await say(wizard, "JHQ")
        await wizard.start(EMPLOYEE_ID, EMPLOYEE_ID, "Maria Santos")

        assert conversations.get(EMPLOYEE_ID).current_step == TicketForm.DEPARTMENT
        assert "department" in transport.last(EMPLOYEE_ID)["text"]

    @pytest.mark.asyncio
    async def test_unlisted_employee_cannot_start(self, conversations, machine, routing, transport):
        restricted = PermissionsManager(support_staff_ids=["1001"], employee_ids=["3001"])
        wizard = TicketWizard(conversations, machine, routing, transport, restricted, BRANCHES)

        with pytest.raises(NotAuthorized):
            await say(wizard, "hello")
        assert conversations.get(EMPLOYEE_ID) is None
