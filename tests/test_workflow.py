"""
Tests for /status handling and the creator's confirm / cancel buttons
"""
import pytest

from database.models import TicketStatus
from services.exceptions import NotAuthorized, NotTicketOwner, RemarksRequired, ValidationError
from tests.conftest import EMPLOYEE_ID, JHQ_GROUP, OTHER_EMPLOYEE_ID, STAFF_ID, make_draft
from utils.texts import new_ticket_message


async def status(workflow, text, replied=None, actor_id=STAFF_ID):
    await workflow.status_command(JHQ_GROUP, actor_id, "Juan", text, replied)


class TestStatusCommand:
    """/status in the support group"""

    @pytest.mark.asyncio
    async def test_bare_command_shows_help(self, workflow, transport):
        await status(workflow, "/status")
        assert "HOW TO UPDATE STATUS" in transport.last(JHQ_GROUP)["text"]

    @pytest.mark.asyncio
    async def test_legacy_form_applies(self, machine, workflow, transport):
        ticket = await machine.create_ticket(make_draft())

        await status(workflow, f"/status {ticket.ticket_id.lower()} ip")

        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.IN_PROCESS
        assert "Updated" in transport.last(JHQ_GROUP)["text"]

    @pytest.mark.asyncio
    async def test_legacy_form_with_remarks(self, machine, workflow):
        ticket = await machine.create_ticket(make_draft())

        await status(workflow, f"/status {ticket.ticket_id} resolved Replaced the power supply unit")

        stored = await machine.get_ticket(ticket.ticket_id)
        assert stored.status == TicketStatus.RESOLVED
        assert stored.remarks == "Replaced the power supply unit"

    @pytest.mark.asyncio
    async def test_legacy_form_requires_remarks(self, machine, workflow):
        ticket = await machine.create_ticket(make_draft())

        with pytest.raises(RemarksRequired) as exc:
            await status(workflow, f"/status {ticket.ticket_id} rv")

        assert "Usage" in exc.value.message
        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.PENDING

    @pytest.mark.asyncio
    async def test_invalid_status_and_id(self, machine, workflow):
        ticket = await machine.create_ticket(make_draft())

        with pytest.raises(ValidationError):
            await status(workflow, f"/status {ticket.ticket_id} fixed")
        with pytest.raises(ValidationError):
            await status(workflow, f"/status {ticket.ticket_id} closed")
        with pytest.raises(ValidationError):
            await status(workflow, "/status <b>42</b> ip")
        with pytest.raises(ValidationError):
            await status(workflow, f"/status {ticket.ticket_id}")

    @pytest.mark.asyncio
    async def test_reply_shows_buttons(self, machine, workflow, transport):
        """Replying /status to a ticket card offers the valid buttons"""
        ticket = await machine.create_ticket(make_draft())

        await status(workflow, "/status", replied=new_ticket_message(ticket))

        sent = transport.last(JHQ_GROUP)
        assert sent["kind"] == "buttons"
        assert ticket.ticket_id in sent["text"]

    @pytest.mark.asyncio
    async def test_reply_without_ticket_id(self, workflow):
        with pytest.raises(ValidationError):
            await status(workflow, "/status", replied="good morning everyone")

    @pytest.mark.asyncio
    async def test_employee_cannot_use_status(self, machine, workflow):
        ticket = await machine.create_ticket(make_draft())

        with pytest.raises(NotAuthorized):
            await status(workflow, f"/status {ticket.ticket_id} ip", actor_id=EMPLOYEE_ID)


class TestCreatorButtons:
    """Confirm / not resolved / cancel pressed by the ticket creator"""

    async def resolved(self, machine):
        ticket = await machine.create_ticket(make_draft())
        await machine.transition(ticket.ticket_id, TicketStatus.IN_PROCESS, STAFF_ID, "Juan")
        await machine.transition(ticket.ticket_id, TicketStatus.RESOLVED, STAFF_ID, "Juan", "Done")
        return ticket

    @pytest.mark.asyncio
    async def test_confirm(self, machine, workflow, transport):
        ticket = await self.resolved(machine)

        reply = await workflow.confirm_resolution(EMPLOYEE_ID, 77, EMPLOYEE_ID, "Maria", ticket.ticket_id, "yes")

        assert reply.text == "✅ Confirmed!"
        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.CONFIRMED
        assert "TICKET CONFIRMED" in transport.edits[-1]["text"]

    @pytest.mark.asyncio
    async def test_not_resolved_reopens_and_alerts_group(self, wired_machine, workflow, transport):
        """Reopen puts the ticket back in process and re-posts it to the branch group"""
        ticket = await self.resolved(wired_machine)
        transport.clear()

        await workflow.confirm_resolution(EMPLOYEE_ID, 77, EMPLOYEE_ID, "Maria", ticket.ticket_id, "no")

        assert (await wired_machine.get_ticket(ticket.ticket_id)).status == TicketStatus.IN_PROCESS
        assert "TICKET REOPENED" in transport.edits[-1]["text"]
        group_message = transport.last(JHQ_GROUP)
        assert "TICKET REOPENED" in group_message["text"]
        assert group_message["kind"] == "buttons"

    @pytest.mark.asyncio
    async def test_other_user_cannot_confirm(self, machine, workflow):
        ticket = await self.resolved(machine)

        with pytest.raises(NotTicketOwner):
            await workflow.confirm_resolution(
                OTHER_EMPLOYEE_ID, 78, OTHER_EMPLOYEE_ID, "Ana", ticket.ticket_id, "yes"
            )

    @pytest.mark.asyncio
    async def test_bad_answer(self, machine, workflow):
        ticket = await self.resolved(machine)

        with pytest.raises(ValidationError):
            await workflow.confirm_resolution(EMPLOYEE_ID, 77, EMPLOYEE_ID, "Maria", ticket.ticket_id, "maybe")

    @pytest.mark.asyncio
    async def test_cancel_by_creator(self, machine, workflow, transport):
        ticket = await machine.create_ticket(make_draft())

        reply = await workflow.cancel_by_creator(EMPLOYEE_ID, 79, EMPLOYEE_ID, "Maria", ticket.ticket_id)

        assert reply.text == "✅ Ticket cancelled"
        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.CANCELLED_USER
        assert "TICKET CANCELLED" in transport.edits[-1]["text"]
