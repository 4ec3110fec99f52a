"""
Message dispatch for one planning-poker room.

Each inbound frame goes through the connection guard, is decoded into one of
the closed set of message models, and is routed to exactly one handler. A
handler either completes all of its state changes or raises ``SessionError``
before touching state, so a rejection never leaves the round or queue half
updated. The only awaits that can interleave with other connections are the
calls out to the ticket source; their results are checked against the state
they were issued for before being applied.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Union

from fastapi import WebSocket
from pydantic import ValidationError

from planning_poker.config.loader import (
    get_seed_tickets,
    get_ticket_source_settings,
    get_validation_limits,
)
from planning_poker.models.ticket import Ticket, TicketSourceConfig
from planning_poker.schemas.messages import (
    CLIENT_MESSAGE_CLASSES,
    MESSAGE_TYPES,
    CastVoteMessage,
    CompleteVotingMessage,
    FetchTicketsMessage,
    JoinMessage,
    PongMessage,
    RevealVotesMessage,
    SelectTicketMessage,
    SetFinalResultMessage,
    SetTicketSourceConfigMessage,
    describe_validation_error,
    parse_client_message,
)
from planning_poker.services.broadcast import BroadcastProtocol
from planning_poker.services.connection_guard import (
    ConnectionContext,
    ConnectionGuard,
    load_guard_settings,
)
from planning_poker.services.errors import SequencingError, SessionError
from planning_poker.services.session_state import SessionState
from planning_poker.services.ticket_queue import tickets_from_mappings
from planning_poker.services.ticket_source import (
    JiraTicketSource,
    TicketSourceError,
    load_ticket_source,
)
from planning_poker.utils.validation import (
    DISPLAY_NAME_MAX_LENGTH,
    sanitize_display_name,
    validate_ticket_source_config,
)
from planning_poker.utils.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Session expired due to inactivity"
SESSION_EXPIRED_CLOSE_CODE = 4000
HEARTBEAT_CLOSE_CODE = 1001
RATE_LIMIT_MESSAGE = "Too many messages; slow down"


class SessionCoordinator:
    def __init__(
        self,
        state: SessionState,
        manager: WebSocketManager,
        guard: ConnectionGuard,
        ticket_source: JiraTicketSource,
        *,
        ticket_source_timeout: float = 15,
        display_name_max_length: int = DISPLAY_NAME_MAX_LENGTH,
    ) -> None:
        self.state = state
        self.manager = manager
        self.guard = guard
        self.ticket_source = ticket_source
        self.ticket_source_timeout = ticket_source_timeout
        self.display_name_max_length = display_name_max_length
        self.broadcast = BroadcastProtocol(manager, state)

    # Connection lifecycle -------------------------------------------------

    async def connect(self, websocket: WebSocket) -> str:
        connection_id = await self.manager.connect(websocket)
        self._open(connection_id)
        return connection_id

    def _open(self, connection_id: str) -> ConnectionContext:
        context = self.guard.open(connection_id)
        self.guard.start_timers(
            context,
            on_probe=self._send_probe,
            on_unresponsive=self._terminate_unresponsive,
            on_expired=self._expire_session,
        )
        return context

    async def disconnect(self, connection_id: str) -> None:
        """Clean up after a connection; safe to call more than once."""
        context = self.guard.close(connection_id)
        self.manager.disconnect(connection_id)
        if context is None or context.participant_id is None:
            return

        participant_id = context.participant_id
        context.participant_id = None
        self.state.round.remove_vote(participant_id)
        result = self.state.registry.leave(participant_id)
        if result is None:
            return

        if result.emptied:
            self.state.clear()
            await self.broadcast.broadcast_users()
            return

        if result.promoted is not None:
            await self.broadcast.send_current_user(result.promoted)
        await self.broadcast.broadcast_users()
        if not self.state.round.revealed:
            await self.broadcast.broadcast_voting_state()

    async def shutdown(self) -> None:
        self.guard.close_all()

    async def _send_probe(self, context: ConnectionContext) -> None:
        await self.broadcast.send_ping(context.connection_id)

    async def _terminate_unresponsive(self, context: ConnectionContext) -> None:
        await self.manager.close(
            context.connection_id, code=HEARTBEAT_CLOSE_CODE, reason="Heartbeat timeout"
        )
        await self.disconnect(context.connection_id)

    async def _expire_session(self, context: ConnectionContext) -> None:
        await self.broadcast.send_session_timeout(
            context.connection_id, SESSION_EXPIRED_MESSAGE
        )
        await self.manager.close(
            context.connection_id,
            code=SESSION_EXPIRED_CLOSE_CODE,
            reason="Session expired",
        )
        await self.disconnect(context.connection_id)

    # Inbound messages -----------------------------------------------------

    async def handle_message(self, connection_id: str, raw: Union[str, bytes]) -> None:
        context = self.guard.get(connection_id)
        if context is None:
            return

        if not self.guard.check_rate(context):
            logger.warning("Rate limit exceeded; dropping message from connection_id=%s", connection_id)
            if not context.rate_limit_notified:
                context.rate_limit_notified = True
                await self.broadcast.send_error(connection_id, RATE_LIMIT_MESSAGE)
            return

        try:
            data = json.loads(raw)
        except (TypeError, ValueError, RecursionError):
            logger.info("Malformed frame from connection_id=%s", connection_id)
            await self.broadcast.send_error(connection_id, "Malformed message: invalid JSON")
            return
        if not isinstance(data, dict):
            await self.broadcast.send_error(connection_id, "Malformed message: expected an object")
            return

        message_type = data.get("type")
        if message_type is not None and not isinstance(message_type, str):
            await self.broadcast.send_error(
                connection_id, "Malformed message: type must be a string"
            )
            return
        if message_type == "pong":
            self.guard.record_pong(context)
        else:
            self.guard.record_activity(context)
            participant = self.state.registry.get(context.participant_id)
            if participant is not None:
                participant.last_activity = time.monotonic()

        if message_type not in MESSAGE_TYPES:
            logger.warning(
                "Ignoring unknown message type %r from connection_id=%s",
                message_type,
                connection_id,
            )
            return

        try:
            message = parse_client_message(data)
        except ValidationError as exc:
            await self.broadcast.send_error(connection_id, describe_validation_error(exc))
            return

        logger.debug("Dispatching %s from connection_id=%s", message_type, connection_id)
        handler = getattr(self, _HANDLERS[type(message)])
        try:
            await handler(context, message)
        except SessionError as exc:
            logger.info(
                "Rejected %s from connection_id=%s: %s",
                message_type,
                connection_id,
                exc.message,
            )
            await self.broadcast.send_error(connection_id, exc.message)

    async def _on_join(self, context: ConnectionContext, message: JoinMessage) -> None:
        if context.joined:
            raise SequencingError("Already joined the session")
        name = sanitize_display_name(message.username, self.display_name_max_length)
        participant = self.state.registry.join(context.connection_id, name)
        context.participant_id = participant.id

        connection_id = context.connection_id
        await self.broadcast.send_current_user(participant)
        await self.broadcast.send_ticket_source_status(connection_id)
        await self.broadcast.broadcast_users()
        await self.broadcast.send_tickets(connection_id)
        await self.broadcast.broadcast_current_ticket()
        await self.broadcast.broadcast_voting_state()
        if self.state.round.revealed:
            statistics = self.state.round.statistics(self.state.voter_ids())
            await self.broadcast.send_votes_revealed(connection_id, statistics)

    async def _on_cast_vote(self, context: ConnectionContext, message: CastVoteMessage) -> None:
        participant = self.state.require_participant(context.participant_id)
        vote = self.state.round.cast_vote(participant.id, message.points)
        logger.info("Participant %s voted", participant.id)
        logger.debug("Participant %s vote value %r", participant.id, vote)
        await self.broadcast.broadcast_voting_state()

    async def _on_reveal_votes(self, context: ConnectionContext, message: RevealVotesMessage) -> None:
        self.state.require_host(context.participant_id, "reveal votes")
        statistics = self.state.round.reveal(self.state.voter_ids())
        logger.info(
            "Votes revealed: total=%d most_common=%s",
            statistics.total_votes,
            statistics.most_common,
        )
        await self.broadcast.broadcast_votes_revealed(statistics)

    async def _on_set_final_result(
        self, context: ConnectionContext, message: SetFinalResultMessage
    ) -> None:
        self.state.require_host(context.participant_id, "set the final result")
        self.state.round.set_final_value(message.result)
        statistics = self.state.round.statistics(self.state.voter_ids())
        await self.broadcast.broadcast_votes_revealed(statistics)

    async def _on_complete_voting(
        self, context: ConnectionContext, message: CompleteVotingMessage
    ) -> None:
        self.state.require_host(context.participant_id, "complete voting")
        completed = self.state.queue.current()
        if completed is None:
            raise SequencingError("There are no tickets in the queue")
        final_value = self.state.round.final_value
        config = self.state.ticket_source_config

        self.state.queue.advance()
        await self.broadcast.broadcast_current_ticket()
        await self.broadcast.broadcast_voting_state()

        if final_value is None:
            logger.info("No final value for %s; skipping estimate update", completed.id)
            return
        if config is None:
            logger.info("No ticket source configured; skipping estimate update for %s", completed.id)
            return
        await self._push_estimate(context.connection_id, config, completed, final_value)

    async def _push_estimate(
        self,
        connection_id: str,
        config: TicketSourceConfig,
        ticket: Ticket,
        value: Union[int, float],
    ) -> None:
        error: Optional[str] = None
        try:
            await asyncio.wait_for(
                self.ticket_source.update_estimate(config, ticket.id, value),
                timeout=self.ticket_source_timeout,
            )
        except TicketSourceError as exc:
            error = exc.message
        except asyncio.TimeoutError:
            error = "The ticket source did not respond in time"

        if error is None:
            logger.info("Updated %s with estimate %s", ticket.id, value)
        else:
            logger.warning("Estimate update for %s failed: %s", ticket.id, error)
        await self.broadcast.send_source_update_result(
            connection_id, ticket.id, value, error=error
        )

    async def _on_set_ticket_source_config(
        self, context: ConnectionContext, message: SetTicketSourceConfigMessage
    ) -> None:
        self.state.require_host(context.participant_id, "configure the ticket source")
        config = validate_ticket_source_config(message.config.model_dump())
        self.state.configure_ticket_source(config)
        await self.broadcast.broadcast_ticket_source_status()

    async def _on_fetch_tickets(
        self, context: ConnectionContext, message: FetchTicketsMessage
    ) -> None:
        self.state.require_host(context.participant_id, "fetch tickets")
        config = self.state.ticket_source_config
        if config is None:
            raise SequencingError("Ticket source configuration not set")

        generation = self.state.config_generation
        filters: Dict[str, Any] = message.filters.model_dump(exclude_none=True)
        try:
            tickets = await asyncio.wait_for(
                self.ticket_source.fetch_tickets(config, filters),
                timeout=self.ticket_source_timeout,
            )
        except TicketSourceError as exc:
            await self.broadcast.send_error(
                context.connection_id, f"Failed to fetch tickets: {exc.message}"
            )
            return
        except asyncio.TimeoutError:
            logger.warning("Ticket fetch from %s timed out", config.domain)
            await self.broadcast.send_error(
                context.connection_id,
                "Failed to fetch tickets: the ticket source did not respond in time",
            )
            return

        if generation != self.state.config_generation:
            logger.info("Ticket source changed during fetch; discarding %d tickets", len(tickets))
            await self.broadcast.send_error(
                context.connection_id,
                "Ticket source configuration changed while fetching; results discarded",
            )
            return

        self.state.queue.set_tickets(tickets)
        await self.broadcast.broadcast_tickets()
        await self.broadcast.send_tickets_fetched(context.connection_id, len(tickets))
        await self.broadcast.broadcast_current_ticket()
        await self.broadcast.broadcast_voting_state()

    async def _on_select_ticket(
        self, context: ConnectionContext, message: SelectTicketMessage
    ) -> None:
        self.state.require_host(context.participant_id, "select tickets")
        self.state.queue.select_ticket(message.ticketIndex)
        await self.broadcast.broadcast_current_ticket()
        await self.broadcast.broadcast_voting_state()

    async def _on_pong(self, context: ConnectionContext, message: PongMessage) -> None:
        # Liveness was already recorded before dispatch.
        return None


_HANDLERS = {
    JoinMessage: "_on_join",
    CastVoteMessage: "_on_cast_vote",
    RevealVotesMessage: "_on_reveal_votes",
    SetFinalResultMessage: "_on_set_final_result",
    CompleteVotingMessage: "_on_complete_voting",
    SetTicketSourceConfigMessage: "_on_set_ticket_source_config",
    FetchTicketsMessage: "_on_fetch_tickets",
    SelectTicketMessage: "_on_select_ticket",
    PongMessage: "_on_pong",
}

_unhandled = set(CLIENT_MESSAGE_CLASSES) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(
        "No handler for message kinds: "
        + ", ".join(sorted(model.__name__ for model in _unhandled))
    )


def build_coordinator() -> SessionCoordinator:
    """Wire one room from config.yaml settings."""
    state = SessionState(tickets=tickets_from_mappings(get_seed_tickets()))
    limits = get_validation_limits()
    return SessionCoordinator(
        state,
        WebSocketManager(),
        ConnectionGuard(load_guard_settings()),
        load_ticket_source(),
        ticket_source_timeout=get_ticket_source_settings()["timeout_seconds"],
        display_name_max_length=limits["display_name_max_length"],
    )
