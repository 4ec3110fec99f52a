import pytest

from planning_poker.models.ticket import Ticket
from planning_poker.services.errors import ProtocolError, SequencingError
from planning_poker.services.ticket_queue import TicketQueue, tickets_from_mappings
from planning_poker.services.voting_round import VotingRound
from planning_poker.tests.fixtures.session_fixtures import SAMPLE_TICKETS


def _queue_with_votes():
    voting_round = VotingRound()
    queue = TicketQueue(voting_round, SAMPLE_TICKETS)
    voting_round.cast_vote("p1", 5)
    voting_round.reveal()
    return queue, voting_round


def _assert_round_reset(voting_round: VotingRound) -> None:
    assert voting_round.votes == {}
    assert voting_round.revealed is False
    assert voting_round.final_value is None


def test_set_tickets_points_at_first_and_resets_round():
    queue, voting_round = _queue_with_votes()
    replacement = [Ticket(id="NEW-1", title="First"), Ticket(id="NEW-2", title="Second")]

    queue.set_tickets(replacement)

    assert queue.current().id == "NEW-1"
    assert queue.cursor == 0
    assert voting_round.vote_count() == 0
    _assert_round_reset(voting_round)


def test_advance_wraps_after_last_ticket():
    queue, voting_round = _queue_with_votes()
    seen = [queue.advance().id for _ in range(len(SAMPLE_TICKETS))]

    assert seen == ["POKER-2", "POKER-3", "POKER-1"]
    assert queue.cursor == 0
    _assert_round_reset(voting_round)


def test_advance_on_empty_queue_is_rejected():
    voting_round = VotingRound()
    queue = TicketQueue(voting_round)
    assert queue.current() is None
    with pytest.raises(SequencingError):
        queue.advance()


def test_select_ticket_out_of_range_changes_nothing():
    queue, voting_round = _queue_with_votes()
    generation = queue.generation

    with pytest.raises(ProtocolError):
        queue.select_ticket(99)

    assert queue.cursor == 0
    assert queue.generation == generation
    assert voting_round.revealed is True
    assert voting_round.votes == {"p1": 5}


def test_select_ticket_moves_cursor_and_resets_round():
    queue, voting_round = _queue_with_votes()

    selected = queue.select_ticket(2)

    assert selected.id == "POKER-3"
    assert queue.current_payload()["ticketIndex"] == 2
    assert queue.current_payload()["totalTickets"] == 3
    _assert_round_reset(voting_round)


def test_tickets_from_mappings_skips_entries_without_id():
    tickets = tickets_from_mappings(
        [
            {"id": "A-1", "title": "Alpha", "issueType": "Story"},
            {"title": "No id"},
            {"id": "  ", "title": "Blank id"},
        ]
    )
    assert [ticket.id for ticket in tickets] == ["A-1"]
    assert tickets[0].to_payload()["issueType"] == "Story"
    assert tickets[0].assignee == "Unassigned"
