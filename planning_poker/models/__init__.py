from .ticket import Ticket, TicketSourceConfig

__all__ = [
    "Ticket",
    "TicketSourceConfig",
]
