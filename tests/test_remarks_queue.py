"""
Tests for the pending remarks queue and the staff button flow
"""
from unittest.mock import AsyncMock

import pytest

from database.models import TicketStatus
from services.exceptions import AlreadyTerminal, NotAuthorized, PersistenceError
from services.ticket_service import TicketService
from tests.conftest import EMPLOYEE_ID, JHQ_GROUP, OTHER_STAFF_ID, STAFF_ID, make_draft

CARD_ID = 501


async def taken_ticket(machine, **overrides):
    ticket = await machine.create_ticket(make_draft(**overrides))
    await machine.transition(ticket.ticket_id, TicketStatus.IN_PROCESS, STAFF_ID, "Juan")
    return ticket


async def press(workflow, ticket_id, code, actor_id=STAFF_ID, actor_name="Juan", message_id=CARD_ID):
    return await workflow.press_status_button(JHQ_GROUP, message_id, actor_id, actor_name, ticket_id, code)


class TestRemarksFlow:
    """Resolve button -> remarks prompt -> free text applies the status"""

    @pytest.mark.asyncio
    async def test_resolve_with_remarks(self, wired_machine, workflow, remarks, transport, db):
        """Status changes only once the remarks text arrives"""
        ticket = await taken_ticket(wired_machine)
        transport.clear()

        reply = await press(workflow, ticket.ticket_id, "rv")
        stored = await wired_machine.get_ticket(ticket.ticket_id)

        assert "remarks" in reply.text
        assert stored.status == TicketStatus.IN_PROCESS
        assert "REMARKS REQUIRED" in transport.last(JHQ_GROUP)["text"]
        assert remarks.has_pending(JHQ_GROUP, STAFF_ID)
        assert remarks.pending(JHQ_GROUP, STAFF_ID)[0].card_message_id == CARD_ID

        outcome = await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "Reset the router")

        assert outcome.applied
        assert outcome.remaining == 0
        stored = await wired_machine.get_ticket(ticket.ticket_id)
        assert stored.status == TicketStatus.RESOLVED
        assert stored.remarks == "Reset the router"

        async with db.session_factory() as session:
            history = await TicketService(session).get_status_history(ticket.ticket_id)
        assert history[-1].to_status == TicketStatus.RESOLVED
        assert history[-1].remarks == "Reset the router"

        assert any("STATUS UPDATED" in text for text in transport.texts(JHQ_GROUP))
        assert transport.edits[-1]["message_id"] == CARD_ID
        assert "Reset the router" in transport.edits[-1]["text"]

        # Creator is asked to confirm instead of a plain update
        creator_messages = transport.to(EMPLOYEE_ID)
        assert len(creator_messages) == 1
        assert creator_messages[0]["kind"] == "buttons"
        assert "confirm" in creator_messages[0]["text"]

    @pytest.mark.asyncio
    async def test_fifo_order(self, machine, workflow, remarks, transport):
        """Queued entries resolve strictly in arrival order"""
        first = await taken_ticket(machine)
        second = await taken_ticket(machine)
        transport.clear()

        await press(workflow, first.ticket_id, "rv")
        await press(workflow, second.ticket_id, "cs", message_id=CARD_ID + 1)

        assert [e.ticket_id for e in remarks.pending(JHQ_GROUP, STAFF_ID)] == [first.ticket_id, second.ticket_id]
        assert "Queued" in transport.last(JHQ_GROUP)["text"]

        outcome = await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "Fixed the first one")
        assert outcome.entry.ticket_id == first.ticket_id
        assert outcome.remaining == 1
        assert "CANCELLATION REASON REQUIRED" in transport.last(JHQ_GROUP)["text"]

        outcome = await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "Duplicate request")
        assert outcome.entry.ticket_id == second.ticket_id
        assert (await machine.get_ticket(first.ticket_id)).status == TicketStatus.RESOLVED
        assert (await machine.get_ticket(second.ticket_id)).status == TicketStatus.CANCELLED_STAFF

    @pytest.mark.asyncio
    async def test_duplicate_press_not_requeued(self, machine, workflow, remarks):
        ticket = await taken_ticket(machine)

        await press(workflow, ticket.ticket_id, "rv")
        await press(workflow, ticket.ticket_id, "rv")

        assert len(remarks) == 1

    @pytest.mark.asyncio
    async def test_cancel_remarks(self, machine, workflow, remarks, transport):
        """/cancel_remarks drops the oldest entry without changing status"""
        first = await taken_ticket(machine)
        second = await taken_ticket(machine)
        await press(workflow, first.ticket_id, "rv")
        await press(workflow, second.ticket_id, "rv")

        entry = await remarks.cancel(JHQ_GROUP, STAFF_ID, "Juan")

        assert entry.ticket_id == first.ticket_id
        assert (await machine.get_ticket(first.ticket_id)).status == TicketStatus.IN_PROCESS
        assert second.ticket_id in transport.last(JHQ_GROUP)["text"]
        assert [e.ticket_id for e in remarks.pending(JHQ_GROUP, STAFF_ID)] == [second.ticket_id]

    @pytest.mark.asyncio
    async def test_empty_queue_is_ordinary_text(self, remarks):
        assert await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "hello team") is None
        assert await remarks.cancel(JHQ_GROUP, STAFF_ID, "Juan") is None

    @pytest.mark.asyncio
    async def test_queues_are_per_chat_and_actor(self, machine, workflow, remarks):
        ticket = await taken_ticket(machine)
        await press(workflow, ticket.ticket_id, "rv")

        assert await remarks.resolve(JHQ_GROUP, OTHER_STAFF_ID, "Pedro", "not mine") is None
        assert await remarks.resolve("-100222", STAFF_ID, "Juan", "other chat") is None
        assert remarks.has_pending(JHQ_GROUP, STAFF_ID)

    @pytest.mark.asyncio
    async def test_stale_entries_are_swept(self, machine, workflow, remarks, clock):
        """Entries older than the max age are discarded unapplied"""
        ticket = await taken_ticket(machine)
        await press(workflow, ticket.ticket_id, "rv")

        clock.advance(minutes=10)
        assert remarks.sweep() == 0

        clock.advance(minutes=6)
        assert remarks.sweep() == 1
        assert await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "late remarks") is None
        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.IN_PROCESS

    @pytest.mark.asyncio
    async def test_entry_dropped_when_ticket_closed_meanwhile(self, machine, workflow, remarks, transport):
        """Creator cancelled before the remarks arrived: the entry is dropped"""
        ticket = await taken_ticket(machine)
        await press(workflow, ticket.ticket_id, "rv")
        await machine.transition(ticket.ticket_id, TicketStatus.CANCELLED_USER, EMPLOYEE_ID, "Maria")

        outcome = await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "Fixed")

        assert not outcome.applied
        assert "already" in outcome.error
        assert len(remarks) == 0
        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.CANCELLED_USER

    @pytest.mark.asyncio
    async def test_failed_write_keeps_entry(self, machine, workflow, remarks, transport, monkeypatch):
        """Database failure: nothing applied, the entry waits for another try"""
        ticket = await taken_ticket(machine)
        await press(workflow, ticket.ticket_id, "rv")
        monkeypatch.setattr(machine, "transition", AsyncMock(side_effect=PersistenceError()))

        outcome = await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "Reset the router")

        assert not outcome.applied
        assert outcome.error == PersistenceError.default_message
        assert transport.last(JHQ_GROUP)["text"] == PersistenceError.default_message
        assert [e.ticket_id for e in remarks.pending(JHQ_GROUP, STAFF_ID)] == [ticket.ticket_id]

        monkeypatch.undo()
        outcome = await remarks.resolve(JHQ_GROUP, STAFF_ID, "Juan", "Reset the router")

        assert outcome.applied
        assert (await machine.get_ticket(ticket.ticket_id)).status == TicketStatus.RESOLVED
        assert len(remarks) == 0


class TestStatusButtons:
    """Buttons that apply immediately and the checks done before queueing"""

    @pytest.mark.asyncio
    async def test_in_process_button_edits_card(self, machine, workflow, transport):
        ticket = await machine.create_ticket(make_draft())

        reply = await press(workflow, ticket.ticket_id, "ip")

        assert "In Process" in reply.text
        assert (await machine.get_ticket(ticket.ticket_id)).assigned_to == STAFF_ID
        edit = transport.edits[-1]
        assert edit["message_id"] == CARD_ID
        codes = [b.callback_data for row in edit["markup"].inline_keyboard for b in row]
        assert f"st:{ticket.ticket_id}:rv" in codes

    @pytest.mark.asyncio
    async def test_employee_cannot_press(self, machine, workflow):
        ticket = await machine.create_ticket(make_draft())

        with pytest.raises(NotAuthorized):
            await press(workflow, ticket.ticket_id, "ip", actor_id=EMPLOYEE_ID, actor_name="Maria")

    @pytest.mark.asyncio
    async def test_terminal_ticket_not_queued(self, machine, workflow, remarks):
        """Resolve on a finished ticket fails before asking for remarks"""
        ticket = await machine.create_ticket(make_draft())
        await machine.transition(ticket.ticket_id, TicketStatus.CANCELLED_USER, EMPLOYEE_ID, "Maria")

        with pytest.raises(AlreadyTerminal):
            await press(workflow, ticket.ticket_id, "rv")
        assert len(remarks) == 0
