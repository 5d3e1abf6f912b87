"""
Tests for the in-memory wizard conversation store
"""
import pytest

from services.conversation_store import ConversationStore
from services.exceptions import NoActiveConversation
from states import TicketForm


@pytest.fixture
def store(clock):
    return ConversationStore(clock=clock)


class TestConversationStore:

    def test_start_begins_at_branch(self, store, clock):
        conversation = store.start("2001", "Maria")

        assert conversation.current_step == TicketForm.BRANCH
        assert conversation.started_at == clock.now
        assert "2001" in store

    def test_start_keeps_live_conversation(self, store):
        """A second start does not reset answers already given"""
        store.start("2001", "Maria")
        store.advance("2001", "branch", "JHQ", TicketForm.DEPARTMENT)

        conversation = store.start("2001", "Maria")

        assert conversation.current_step == TicketForm.DEPARTMENT
        assert conversation.collected_fields == {"branch": "JHQ"}

    def test_missing_display_name(self, store):
        assert store.start("2001", "").display_name == "Unknown User"

    def test_advance_refreshes_activity(self, store, clock):
        store.start("2001", "Maria")
        clock.advance(minutes=20)
        store.advance("2001", "branch", "JHQ", TicketForm.DEPARTMENT)
        clock.advance(minutes=20)

        assert store.get("2001") is not None

    def test_advance_without_conversation(self, store):
        with pytest.raises(NoActiveConversation):
            store.advance("2001", "branch", "JHQ", TicketForm.DEPARTMENT)

    def test_expired_conversation_is_dropped(self, store, clock):
        store.start("2001", "Maria")
        clock.advance(minutes=31)

        assert store.get("2001") is None
        assert len(store) == 0

    def test_end_returns_fields(self, store):
        store.start("2001", "Maria")
        store.advance("2001", "branch", "GS", TicketForm.DEPARTMENT)

        assert store.end("2001") == {"branch": "GS"}
        assert store.end("2001") is None
        assert "2001" not in store

    def test_sweep(self, store, clock):
        store.start("2001", "Maria")
        clock.advance(minutes=25)
        store.start("2002", "Ana")
        clock.advance(minutes=10)

        assert store.sweep() == 1
        assert "2002" in store
        assert store.sweep() == 0
