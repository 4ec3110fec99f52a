from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from planning_poker.models.ticket import Ticket, TicketSourceConfig
from planning_poker.services.errors import AuthorizationError, SequencingError
from planning_poker.services.session_registry import Participant, SessionRegistry
from planning_poker.services.ticket_queue import TicketQueue
from planning_poker.services.voting_round import VotingRound

logger = logging.getLogger(__name__)


class SessionState:
    """Everything one room knows: participants, the round, the queue and tracker credentials."""

    def __init__(self, tickets: Iterable[Ticket] = ()) -> None:
        self.registry = SessionRegistry()
        self.round = VotingRound()
        self.queue = TicketQueue(self.round, tickets)
        self._ticket_source_config: Optional[TicketSourceConfig] = None
        self.config_generation = 0

    @property
    def ticket_source_config(self) -> Optional[TicketSourceConfig]:
        return self._ticket_source_config

    @property
    def ticket_source_configured(self) -> bool:
        return self._ticket_source_config is not None

    def configure_ticket_source(self, config: Optional[TicketSourceConfig]) -> None:
        self._ticket_source_config = config
        self.config_generation += 1
        if config is not None:
            logger.info("Ticket source configured for domain %s", config.domain)
        else:
            logger.info("Ticket source configuration cleared")

    def require_participant(self, participant_id: Optional[str]) -> Participant:
        participant = self.registry.get(participant_id)
        if participant is None:
            raise SequencingError("Join the session first")
        return participant

    def require_host(self, participant_id: Optional[str], action: str) -> Participant:
        participant = self.require_participant(participant_id)
        if not self.registry.is_host(participant.id):
            raise AuthorizationError(f"Only the host can {action}")
        return participant

    def voter_ids(self) -> List[str]:
        return [participant.id for participant in self.registry.all()]

    def clear(self) -> None:
        """Drop derived state once the room is empty; the ticket list itself is kept."""
        self.queue.rewind()
        if self._ticket_source_config is not None:
            self.configure_ticket_source(None)
        logger.info("Session emptied; round, cursor and ticket source cleared")
