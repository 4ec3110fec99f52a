from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


def _text(value: Any, fallback: str) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


@dataclass(frozen=True)
class Ticket:
    """Immutable snapshot of one work item pulled from the issue tracker."""

    id: str
    title: str
    description: str = "No description available"
    priority: str = "Medium"
    status: str = "Unknown"
    assignee: str = "Unassigned"
    issue_type: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Optional["Ticket"]:
        """Build a ticket from a loose mapping; entries without an id are skipped."""
        ticket_id = _text(raw.get("id"), "")
        if not ticket_id:
            return None
        issue_type = raw.get("issueType") or raw.get("issue_type")
        return cls(
            id=ticket_id,
            title=_text(raw.get("title"), ticket_id),
            description=_text(raw.get("description"), "No description available"),
            priority=_text(raw.get("priority"), "Medium"),
            status=_text(raw.get("status"), "Unknown"),
            assignee=_text(raw.get("assignee"), "Unassigned"),
            issue_type=_text(issue_type, "") or None,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "assignee": self.assignee,
        }
        if self.issue_type:
            payload["issueType"] = self.issue_type
        return payload


@dataclass(frozen=True)
class TicketSourceConfig:
    """Host-supplied tracker credentials. Held in memory only, never broadcast."""

    domain: str
    email: str
    api_token: str = field(repr=False)
    project_key: Optional[str] = None
    story_points_field: Optional[str] = None
