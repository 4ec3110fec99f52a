from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from planning_poker.services.errors import ProtocolError, SequencingError
from planning_poker.utils.validation import (
    VoteValue,
    is_numeric_vote,
    is_valid_final_value,
    normalize_vote,
)

logger = logging.getLogger(__name__)

FinalValue = Optional[Union[int, float]]


@dataclass(frozen=True)
class RoundStatistics:
    most_common: Optional[int]
    final_value: FinalValue
    total_votes: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "mostCommon": self.most_common,
            "finalValue": self.final_value,
            "totalVotes": self.total_votes,
        }


def most_common_vote(values: Iterable[VoteValue]) -> Optional[int]:
    """
    Plurality among numeric votes; sentinels are not counted.

    Equal counts resolve to the lowest value so the outcome does not depend on
    the order votes arrived in.
    """
    counts = Counter(value for value in values if is_numeric_vote(value))
    if not counts:
        return None
    return min(counts, key=lambda value: (-counts[value], value))


class VotingRound:
    """Hidden/revealed vote state for the ticket under the queue cursor."""

    def __init__(self) -> None:
        self._votes: Dict[str, VoteValue] = {}
        self._revealed = False
        self._final_value: FinalValue = None

    @property
    def revealed(self) -> bool:
        return self._revealed

    @property
    def final_value(self) -> FinalValue:
        return self._final_value

    @property
    def votes(self) -> Dict[str, VoteValue]:
        return dict(self._votes)

    def cast_vote(self, participant_id: Optional[str], raw_vote: Any) -> VoteValue:
        if participant_id is None:
            raise SequencingError("Join the session before voting")
        if self._revealed:
            raise SequencingError("Voting has already been revealed for this ticket")
        vote = normalize_vote(raw_vote)
        if vote is None:
            raise ProtocolError(f"Invalid vote value: {raw_vote!r}")
        self._votes[participant_id] = vote
        return vote

    def remove_vote(self, participant_id: str) -> bool:
        return self._votes.pop(participant_id, None) is not None

    def reveal(self, voter_ids: Optional[Iterable[str]] = None) -> RoundStatistics:
        """Mark the round revealed and return fresh statistics; repeat calls only recompute."""
        self._revealed = True
        return self.statistics(voter_ids)

    def set_final_value(self, value: Any) -> FinalValue:
        if not self._revealed:
            raise SequencingError("Cannot set final result before revealing votes")
        if not is_valid_final_value(value):
            raise ProtocolError("Final result must be a number between 0 and 1000")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        self._final_value = value
        logger.info("Final value set to %s", value)
        return value

    def statistics(self, voter_ids: Optional[Iterable[str]] = None) -> RoundStatistics:
        """
        Tally the current votes.

        ``voter_ids`` limits the tally to participants still present, so a vote
        left behind by a departed participant counts as absent. Once revealed,
        an unset final value defaults to the plurality.
        """
        values = self._counted_values(voter_ids)
        most_common = most_common_vote(values)
        if self._revealed and self._final_value is None:
            self._final_value = most_common
        return RoundStatistics(
            most_common=most_common,
            final_value=self._final_value,
            total_votes=len(values),
        )

    def _counted_values(self, voter_ids: Optional[Iterable[str]]) -> List[VoteValue]:
        if voter_ids is None:
            return list(self._votes.values())
        present = set(voter_ids)
        return [vote for pid, vote in self._votes.items() if pid in present]

    def vote_count(self, voter_ids: Optional[Iterable[str]] = None) -> int:
        return len(self._counted_values(voter_ids))

    def reset(self) -> None:
        self._votes = {}
        self._revealed = False
        self._final_value = None
