from states.user_states import TicketForm, next_step

__all__ = ["TicketForm", "next_step"]
