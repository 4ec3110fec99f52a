from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from planning_poker.services.errors import SequencingError

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    id: str
    display_name: str
    connection_id: str
    is_host: bool = False
    last_activity: float = field(default_factory=time.monotonic)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.display_name,
            "isHost": self.is_host,
        }


@dataclass(frozen=True)
class LeaveResult:
    participant: Participant
    promoted: Optional[Participant] = None
    emptied: bool = False


class SessionRegistry:
    """
    Authoritative map of participants plus the single host identity.

    ``_host_id`` is only assigned inside ``join`` and ``leave``; every host-only
    action elsewhere goes through ``is_host``.
    """

    def __init__(self) -> None:
        # dict preserves insertion order, which doubles as join order
        self._participants: Dict[str, Participant] = {}
        self._by_connection: Dict[str, str] = {}
        self._host_id: Optional[str] = None

    @property
    def host_id(self) -> Optional[str]:
        return self._host_id

    def __len__(self) -> int:
        return len(self._participants)

    def join(self, connection_id: str, display_name: str) -> Participant:
        if connection_id in self._by_connection:
            raise SequencingError("Already joined the session")

        participant = Participant(
            id=uuid4().hex,
            display_name=display_name,
            connection_id=connection_id,
        )
        if not self._participants:
            self._host_id = participant.id
            participant.is_host = True
        self._participants[participant.id] = participant
        self._by_connection[connection_id] = participant.id
        logger.info(
            "Participant joined: id=%s name=%s host=%s total=%d",
            participant.id,
            display_name,
            participant.is_host,
            len(self._participants),
        )
        return participant

    def leave(self, participant_id: str) -> Optional[LeaveResult]:
        participant = self._participants.pop(participant_id, None)
        if participant is None:
            return None
        self._by_connection.pop(participant.connection_id, None)
        participant.is_host = False

        if not self._participants:
            self._host_id = None
            logger.info("Participant left: id=%s; session is now empty", participant_id)
            return LeaveResult(participant=participant, emptied=True)

        promoted: Optional[Participant] = None
        if participant_id == self._host_id:
            promoted = next(iter(self._participants.values()))
            promoted.is_host = True
            self._host_id = promoted.id
            logger.info(
                "Host %s left; promoted %s (%s)",
                participant_id,
                promoted.id,
                promoted.display_name,
            )
        else:
            logger.info("Participant left: id=%s", participant_id)
        return LeaveResult(participant=participant, promoted=promoted)

    def get(self, participant_id: Optional[str]) -> Optional[Participant]:
        if participant_id is None:
            return None
        return self._participants.get(participant_id)

    def for_connection(self, connection_id: str) -> Optional[Participant]:
        return self.get(self._by_connection.get(connection_id))

    def current(self) -> Optional[Participant]:
        """Return the current host, if any."""
        return self.get(self._host_id)

    def all(self) -> List[Participant]:
        return list(self._participants.values())

    def is_host(self, participant_id: Optional[str]) -> bool:
        return participant_id is not None and participant_id == self._host_id

    def to_payload(self) -> List[Dict[str, Any]]:
        return [participant.to_payload() for participant in self._participants.values()]
