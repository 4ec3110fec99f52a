import pytest

from planning_poker.services.errors import ProtocolError, SequencingError
from planning_poker.services.voting_round import VotingRound, most_common_vote


def test_votes_are_hidden_until_revealed_and_can_be_replaced():
    voting_round = VotingRound()
    voting_round.cast_vote("p1", 3)
    voting_round.cast_vote("p1", "8")

    assert voting_round.revealed is False
    assert voting_round.votes == {"p1": 8}
    assert voting_round.vote_count() == 1


def test_voting_after_reveal_is_rejected():
    voting_round = VotingRound()
    voting_round.cast_vote("p1", 5)
    voting_round.reveal()

    with pytest.raises(SequencingError):
        voting_round.cast_vote("p1", 8)
    assert voting_round.votes == {"p1": 5}


def test_unknown_participant_and_bad_values_are_rejected():
    voting_round = VotingRound()
    with pytest.raises(SequencingError):
        voting_round.cast_vote(None, 5)
    with pytest.raises(ProtocolError):
        voting_round.cast_vote("p1", 4)
    assert voting_round.votes == {}


def test_tie_resolves_to_lowest_value():
    assert most_common_vote([5, 8]) == 5
    assert most_common_vote([8, 5]) == 5
    assert most_common_vote([13, 13, 3, 3, 21]) == 3


def test_sentinels_are_excluded_from_plurality():
    assert most_common_vote(["?", "?", "∞", 2]) == 2
    assert most_common_vote(["?", "∞"]) is None
    assert most_common_vote([]) is None


def test_reveal_defaults_final_value_to_plurality():
    voting_round = VotingRound()
    voting_round.cast_vote("a", 5)
    voting_round.cast_vote("b", 8)

    statistics = voting_round.reveal()

    assert statistics.most_common == 5
    assert statistics.final_value == 5
    assert statistics.total_votes == 2
    assert voting_round.final_value == 5


def test_reveal_twice_is_stable():
    voting_round = VotingRound()
    voting_round.cast_vote("a", 3)
    first = voting_round.reveal()
    second = voting_round.reveal()

    assert first == second
    assert voting_round.revealed is True


def test_final_value_requires_reveal_and_range():
    voting_round = VotingRound()
    with pytest.raises(SequencingError):
        voting_round.set_final_value(5)
    assert voting_round.final_value is None

    voting_round.reveal()
    with pytest.raises(ProtocolError):
        voting_round.set_final_value(1001)
    assert voting_round.set_final_value(13.0) == 13
    assert voting_round.statistics().final_value == 13


def test_statistics_skip_votes_of_departed_participants():
    voting_round = VotingRound()
    voting_round.cast_vote("gone", 21)
    voting_round.cast_vote("here", 2)

    statistics = voting_round.reveal(voter_ids=["here"])

    assert statistics.total_votes == 1
    assert statistics.most_common == 2


def test_reset_clears_everything_together():
    voting_round = VotingRound()
    voting_round.cast_vote("a", 5)
    voting_round.reveal()
    voting_round.set_final_value(8)

    voting_round.reset()

    assert voting_round.votes == {}
    assert voting_round.revealed is False
    assert voting_round.final_value is None
