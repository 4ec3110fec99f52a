"""Jira REST client used to pull tickets and push agreed estimates back."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Union
from urllib.parse import quote

import httpx

from planning_poker.config.loader import get_ticket_source_settings, get_validation_limits
from planning_poker.models.ticket import Ticket, TicketSourceConfig
from planning_poker.utils.validation import FREE_TEXT_MAX_LENGTH, sanitize_free_text

logger = logging.getLogger(__name__)

SEARCH_PATH = "/rest/api/3/search/jql"
ISSUE_PATH = "/rest/api/3/issue/{issue_key}"
SEARCH_FIELDS = ["summary", "description", "status", "priority", "assignee", "issuetype"]
SPRINT_CLAUSES = {
    "active": "sprint in openSprints()",
    "future": "sprint in futureSprints()",
    "backlog": "sprint is EMPTY",
}
DEFAULT_ORDER = "order by created DESC"


class TicketSourceError(Exception):
    """The tracker rejected a request or could not be reached."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _quote_jql(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_jql(config: TicketSourceConfig, filters: Optional[Mapping[str, Any]] = None) -> str:
    filters = filters or {}
    clauses: List[str] = []
    if config.project_key:
        clauses.append(f"project = {config.project_key}")

    sprint_clause = SPRINT_CLAUSES.get(str(filters.get("sprint") or "").lower())
    if sprint_clause:
        clauses.append(sprint_clause)

    for key, jql_field in (
        ("assignee", "assignee"),
        ("status", "status"),
        ("issueType", "issuetype"),
        ("priority", "priority"),
    ):
        value = filters.get(key)
        if value:
            clauses.append(f"{jql_field} = {_quote_jql(str(value))}")

    return " AND ".join(clauses) if clauses else DEFAULT_ORDER


def _extract_description(raw: Any) -> Optional[str]:
    # Jira Cloud returns Atlassian Document Format; take the first text node.
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        try:
            return raw["content"][0]["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
    return None


def _named(raw: Any, key: str = "name") -> Optional[str]:
    if isinstance(raw, dict):
        return raw.get(key)
    return None


def issue_to_ticket(
    issue: Mapping[str, Any], max_length: int = FREE_TEXT_MAX_LENGTH
) -> Optional[Ticket]:
    fields = issue.get("fields") or {}

    def _clean(value: Any) -> str:
        return sanitize_free_text(value, max_length)

    return Ticket.from_mapping(
        {
            "id": issue.get("key"),
            "title": _clean(fields.get("summary")),
            "description": _clean(_extract_description(fields.get("description"))),
            "priority": _clean(_named(fields.get("priority"))),
            "status": _clean(_named(fields.get("status"))),
            "assignee": _clean(_named(fields.get("assignee"), "displayName")),
            "issueType": _clean(_named(fields.get("issuetype"))) or "Task",
        }
    )


def _error_message(response: httpx.Response, fallback: str, field_id: Optional[str] = None) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    messages = body.get("errorMessages")
    if isinstance(messages, list) and messages:
        return str(messages[0])
    errors = body.get("errors")
    if isinstance(errors, dict) and errors:
        if field_id and field_id in errors:
            return str(errors[field_id])
        return str(next(iter(errors.values())))
    return fallback


class JiraTicketSource:
    def __init__(
        self,
        *,
        timeout_seconds: float = 15,
        default_story_points_field: str = "customfield_10016",
        default_max_results: int = 50,
        max_results_cap: int = 100,
        free_text_max_length: int = FREE_TEXT_MAX_LENGTH,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.default_story_points_field = default_story_points_field
        self.default_max_results = default_max_results
        self.max_results_cap = max_results_cap
        self.free_text_max_length = free_text_max_length
        self._transport = transport

    def _client(self, config: TicketSourceConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"https://{config.domain}",
            auth=httpx.BasicAuth(config.email, config.api_token),
            headers={"Accept": "application/json"},
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    def _max_results(self, filters: Mapping[str, Any]) -> int:
        try:
            requested = int(filters.get("maxResults") or self.default_max_results)
        except (TypeError, ValueError):
            requested = self.default_max_results
        return max(1, min(requested, self.max_results_cap))

    async def fetch_tickets(
        self,
        config: TicketSourceConfig,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Ticket]:
        filters = filters or {}
        jql = build_jql(config, filters)
        logger.info("Fetching tickets from %s with JQL: %s", config.domain, jql)
        payload = {
            "jql": jql,
            "maxResults": self._max_results(filters),
            "fields": SEARCH_FIELDS,
        }
        async with self._client(config) as client:
            try:
                response = await client.post(SEARCH_PATH, json=payload)
            except httpx.RequestError as exc:
                logger.warning("Ticket fetch from %s failed: %s", config.domain, exc)
                raise TicketSourceError(f"Could not reach {config.domain}") from exc

        if response.is_error:
            message = _error_message(response, "Failed to fetch tickets from the tracker")
            logger.warning(
                "Ticket fetch from %s returned %s: %s",
                config.domain,
                response.status_code,
                message,
            )
            raise TicketSourceError(message)

        try:
            issues = response.json().get("issues") or []
        except (ValueError, AttributeError) as exc:
            raise TicketSourceError("Tracker returned an unreadable response") from exc

        tickets: List[Ticket] = []
        for issue in issues:
            ticket = (
                issue_to_ticket(issue, self.free_text_max_length)
                if isinstance(issue, dict)
                else None
            )
            if ticket is not None:
                tickets.append(ticket)
        logger.info("Fetched %d tickets from %s", len(tickets), config.domain)
        return tickets

    async def update_estimate(
        self,
        config: TicketSourceConfig,
        ticket_id: str,
        value: Union[int, float],
    ) -> None:
        field_id = config.story_points_field or self.default_story_points_field
        path = ISSUE_PATH.format(issue_key=quote(ticket_id, safe=""))
        logger.info("Updating %s story points to %s", ticket_id, value)
        async with self._client(config) as client:
            try:
                response = await client.put(path, json={"fields": {field_id: value}})
            except httpx.RequestError as exc:
                logger.warning("Estimate update for %s failed: %s", ticket_id, exc)
                raise TicketSourceError(f"Could not reach {config.domain}") from exc

        if response.is_error:
            message = _error_message(
                response, "Failed to update story points", field_id=field_id
            )
            logger.warning(
                "Estimate update for %s returned %s: %s",
                ticket_id,
                response.status_code,
                message,
            )
            raise TicketSourceError(message)


def load_ticket_source() -> JiraTicketSource:
    settings = get_ticket_source_settings()
    return JiraTicketSource(
        timeout_seconds=settings["timeout_seconds"],
        default_story_points_field=settings["default_story_points_field"],
        default_max_results=settings["default_max_results"],
        max_results_cap=settings["max_results_cap"],
        free_text_max_length=get_validation_limits()["free_text_max_length"],
    )
