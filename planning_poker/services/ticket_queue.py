from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from planning_poker.models.ticket import Ticket
from planning_poker.services.errors import ProtocolError, SequencingError
from planning_poker.services.voting_round import VotingRound
from planning_poker.utils.validation import is_valid_ticket_index

logger = logging.getLogger(__name__)


def tickets_from_mappings(raw_tickets: Iterable[Mapping[str, Any]]) -> List[Ticket]:
    tickets: List[Ticket] = []
    for raw in raw_tickets:
        ticket = Ticket.from_mapping(raw)
        if ticket is None:
            logger.warning("Skipping ticket without an id: %s", raw)
            continue
        tickets.append(ticket)
    return tickets


class TicketQueue:
    """
    Ordered work items plus a cursor.

    Every cursor change resets the bound voting round. ``generation`` increases
    on every change so callers can detect that the current ticket moved while
    they were awaiting something else.
    """

    def __init__(self, voting_round: VotingRound, tickets: Iterable[Ticket] = ()) -> None:
        self._round = voting_round
        self._tickets: Tuple[Ticket, ...] = tuple(tickets)
        self._cursor = 0
        self.generation = 0

    def __len__(self) -> int:
        return len(self._tickets)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def tickets(self) -> Tuple[Ticket, ...]:
        return self._tickets

    def current(self) -> Optional[Ticket]:
        if not self._tickets:
            return None
        return self._tickets[self._cursor]

    def _moved(self) -> None:
        self.generation += 1
        self._round.reset()

    def set_tickets(self, tickets: Iterable[Ticket]) -> None:
        self._tickets = tuple(tickets)
        self._cursor = 0
        self._moved()
        logger.info("Ticket queue replaced with %d tickets", len(self._tickets))

    def advance(self) -> Optional[Ticket]:
        if not self._tickets:
            raise SequencingError("There are no tickets in the queue")
        self._cursor = (self._cursor + 1) % len(self._tickets)
        self._moved()
        current = self.current()
        logger.info("Advanced to ticket %s (%d/%d)", current.id, self._cursor + 1, len(self._tickets))
        return current

    def select_ticket(self, index: Any) -> Ticket:
        if not self._tickets:
            raise SequencingError("There are no tickets in the queue")
        if not is_valid_ticket_index(index, len(self._tickets)):
            raise ProtocolError(
                f"Ticket index must be between 0 and {len(self._tickets) - 1}"
            )
        self._cursor = index
        self._moved()
        current = self._tickets[index]
        logger.info("Selected ticket %s", current.id)
        return current

    def rewind(self) -> None:
        self._cursor = 0
        self._moved()

    def to_payload(self) -> List[Dict[str, Any]]:
        return [ticket.to_payload() for ticket in self._tickets]

    def current_payload(self) -> Dict[str, Any]:
        current = self.current()
        return {
            "ticket": current.to_payload() if current else None,
            "ticketIndex": self._cursor,
            "totalTickets": len(self._tickets),
        }
