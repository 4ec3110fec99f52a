"""
Pure input gates used by the coordinator before any state mutation.

Nothing here touches session state; every function is deterministic and either
returns a cleaned value or raises ``ProtocolError`` with a client-facing message.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional, Union

from planning_poker.models.ticket import TicketSourceConfig
from planning_poker.services.errors import ProtocolError

DISPLAY_NAME_MAX_LENGTH = 50
FREE_TEXT_MAX_LENGTH = 500
FINAL_VALUE_MIN = 0
FINAL_VALUE_MAX = 1000

UNKNOWN_VOTE = "?"
INFINITE_VOTE = "∞"
NUMERIC_VOTES = (0, 1, 2, 3, 5, 8, 13, 21)
VOTE_VALUES = NUMERIC_VOTES + (UNKNOWN_VOTE, INFINITE_VOTE)

VoteValue = Union[int, str]

_CANONICAL_VOTES = {str(value): value for value in VOTE_VALUES}
_TAG_PATTERN = re.compile(r"<[^>]*>")
_DOMAIN_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?(?::\d{1,5})?$")
_FIELD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
_PROJECT_KEY_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def strip_tags(value: str) -> str:
    return _TAG_PATTERN.sub("", value)


def sanitize_display_name(raw: Any, max_length: int = DISPLAY_NAME_MAX_LENGTH) -> str:
    """Return a trimmed, tag-free display name or raise ``ProtocolError``."""
    if not isinstance(raw, str):
        raise ProtocolError("Username must be a string")
    name = strip_tags(raw).strip()
    if not name:
        raise ProtocolError("Username cannot be empty")
    if len(name) > max_length:
        raise ProtocolError(f"Username must be at most {max_length} characters")
    return name


def sanitize_free_text(value: Any, max_length: int = FREE_TEXT_MAX_LENGTH) -> str:
    if value is None:
        return ""
    text = strip_tags(str(value)).strip()
    return text[:max_length]


def _canonical_vote_key(value: Any) -> Optional[str]:
    # bool is an int subclass but never a vote
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return None


def normalize_vote(value: Any) -> Optional[VoteValue]:
    """Map ``5``, ``5.0`` and ``"5"`` onto the same enumeration member."""
    key = _canonical_vote_key(value)
    if key is None:
        return None
    return _CANONICAL_VOTES.get(key)


def is_valid_vote(value: Any) -> bool:
    return normalize_vote(value) is not None


def is_numeric_vote(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_valid_final_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if not math.isfinite(value):
        return False
    return FINAL_VALUE_MIN <= value <= FINAL_VALUE_MAX


def is_valid_ticket_index(index: Any, queue_length: int) -> bool:
    if isinstance(index, bool) or not isinstance(index, int):
        return False
    return 0 <= index < queue_length


def normalize_domain(raw: str) -> str:
    domain = raw.strip()
    domain = re.sub(r"^https?://", "", domain, flags=re.IGNORECASE)
    return domain.rstrip("/")


def validate_ticket_source_config(raw: Mapping[str, Any]) -> TicketSourceConfig:
    """
    Check host-supplied tracker credentials and return a normalised config.

    Required: ``domain``, ``email``, ``apiToken``. Optional: ``projectKey``,
    ``storyPointsField``. The token is kept verbatim; everything else is trimmed.
    """
    if not isinstance(raw, Mapping):
        raise ProtocolError("Ticket source configuration must be an object")

    def _required(key: str) -> str:
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ProtocolError(f"Ticket source configuration requires '{key}'")
        return value.strip()

    domain = normalize_domain(_required("domain"))
    if not _DOMAIN_PATTERN.match(domain):
        raise ProtocolError("Ticket source domain is not a valid host name")

    email = _required("email")
    if "@" not in email or any(char.isspace() for char in email):
        raise ProtocolError("Ticket source email is not valid")

    api_token = _required("apiToken")

    project_key = raw.get("projectKey")
    if project_key is not None and not isinstance(project_key, str):
        raise ProtocolError("Ticket source projectKey must be a string")
    project_key = (project_key or "").strip() or None
    if project_key and not _PROJECT_KEY_PATTERN.match(project_key):
        raise ProtocolError("Ticket source projectKey is not valid")

    field = raw.get("storyPointsField")
    if field is not None and not isinstance(field, str):
        raise ProtocolError("Ticket source storyPointsField must be a string")
    field = (field or "").strip() or None
    if field and not _FIELD_ID_PATTERN.match(field):
        raise ProtocolError("Ticket source storyPointsField is not valid")

    return TicketSourceConfig(
        domain=domain,
        email=email,
        api_token=api_token,
        project_key=project_key,
        story_points_field=field,
    )
