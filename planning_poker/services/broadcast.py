"""Outbound wire messages. Nothing else in the package builds frames for clients."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from planning_poker.services.session_registry import Participant
from planning_poker.services.session_state import SessionState
from planning_poker.services.voting_round import FinalValue, RoundStatistics
from planning_poker.utils.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


class BroadcastProtocol:
    def __init__(self, manager: WebSocketManager, state: SessionState) -> None:
        self.manager = manager
        self.state = state

    async def _send(self, connection_id: str, message: Dict[str, Any]) -> None:
        delivered = await self.manager.send_personal_message(connection_id, message)
        if not delivered:
            logger.debug(
                "Dropped %s for closed connection_id=%s", message.get("type"), connection_id
            )

    async def send_current_user(self, participant: Participant) -> None:
        await self._send(
            participant.connection_id,
            {"type": "currentUser", "user": participant.to_payload()},
        )

    def _ticket_source_status(self) -> Dict[str, Any]:
        return {
            "type": "ticket-source-status",
            "configured": self.state.ticket_source_configured,
        }

    async def send_ticket_source_status(self, connection_id: str) -> None:
        await self._send(connection_id, self._ticket_source_status())

    async def broadcast_ticket_source_status(self) -> None:
        await self.manager.broadcast(self._ticket_source_status())

    async def broadcast_users(self) -> None:
        await self.manager.broadcast(
            {"type": "users", "users": self.state.registry.to_payload()}
        )

    async def send_tickets(self, connection_id: str) -> None:
        await self._send(
            connection_id, {"type": "tickets", "tickets": self.state.queue.to_payload()}
        )

    async def broadcast_tickets(self) -> None:
        await self.manager.broadcast(
            {"type": "tickets", "tickets": self.state.queue.to_payload()}
        )

    async def send_tickets_fetched(self, connection_id: str, count: int) -> None:
        await self._send(connection_id, {"type": "tickets-fetched", "count": count})

    async def broadcast_current_ticket(self) -> None:
        message = {"type": "currentTicket"}
        message.update(self.state.queue.current_payload())
        await self.manager.broadcast(message)

    async def broadcast_voting_state(self) -> None:
        """Counts go to everyone; each voter privately gets back only their own vote."""
        voter_ids = self.state.voter_ids()
        await self.manager.broadcast(
            {
                "type": "votingState",
                "voteCount": self.state.round.vote_count(voter_ids),
                "totalUsers": len(voter_ids),
                "revealed": self.state.round.revealed,
            }
        )
        for participant_id, points in self.state.round.votes.items():
            participant = self.state.registry.get(participant_id)
            if participant is None:
                continue
            await self._send(
                participant.connection_id, {"type": "userVote", "points": points}
            )

    def _revealed_votes(self) -> List[Dict[str, Any]]:
        revealed: List[Dict[str, Any]] = []
        for participant_id, points in self.state.round.votes.items():
            participant = self.state.registry.get(participant_id)
            if participant is None:
                continue
            revealed.append(
                {
                    "userId": participant.id,
                    "username": participant.display_name,
                    "points": points,
                }
            )
        return revealed

    def _votes_revealed(self, statistics: RoundStatistics) -> Dict[str, Any]:
        return {
            "type": "votesRevealed",
            "votes": self._revealed_votes(),
            "statistics": statistics.to_payload(),
            "revealed": True,
        }

    async def broadcast_votes_revealed(self, statistics: RoundStatistics) -> None:
        await self.manager.broadcast(self._votes_revealed(statistics))

    async def send_votes_revealed(self, connection_id: str, statistics: RoundStatistics) -> None:
        """Catch a late joiner up on a round that is already revealed."""
        await self._send(connection_id, self._votes_revealed(statistics))

    async def send_error(self, connection_id: str, message: str) -> None:
        await self._send(connection_id, {"type": "error", "message": message})

    async def send_source_update_result(
        self,
        connection_id: str,
        ticket_id: str,
        value: FinalValue,
        *,
        error: Optional[str] = None,
    ) -> None:
        if error is None:
            message = {
                "type": "source-update-success",
                "ticketId": ticket_id,
                "storyPoints": value,
            }
        else:
            message = {
                "type": "source-update-error",
                "ticketId": ticket_id,
                "storyPoints": value,
                "error": error,
            }
        await self._send(connection_id, message)

    async def send_ping(self, connection_id: str) -> None:
        await self._send(connection_id, {"type": "ping"})

    async def send_session_timeout(self, connection_id: str, message: str) -> None:
        await self._send(connection_id, {"type": "session-timeout", "message": message})
