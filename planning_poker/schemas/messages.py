from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
)


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")


class JoinMessage(InboundMessage):
    type: Literal["join"]
    username: StrictStr


class CastVoteMessage(InboundMessage):
    type: Literal["cast-vote"]
    points: Union[StrictInt, StrictFloat, StrictStr]


class RevealVotesMessage(InboundMessage):
    type: Literal["reveal-votes"]


class SetFinalResultMessage(InboundMessage):
    type: Literal["set-final-result"]
    result: Optional[Union[StrictInt, StrictFloat]]


class CompleteVotingMessage(InboundMessage):
    type: Literal["complete-voting"]


class TicketSourceConfigPayload(InboundMessage):
    domain: StrictStr
    email: StrictStr
    apiToken: StrictStr
    projectKey: Optional[StrictStr] = None
    storyPointsField: Optional[StrictStr] = None


class SetTicketSourceConfigMessage(InboundMessage):
    type: Literal["set-ticket-source-config"]
    config: TicketSourceConfigPayload


class TicketFilters(InboundMessage):
    sprint: Optional[Literal["active", "future", "backlog"]] = None
    assignee: Optional[StrictStr] = Field(default=None, max_length=200)
    status: Optional[StrictStr] = Field(default=None, max_length=200)
    issueType: Optional[StrictStr] = Field(default=None, max_length=200)
    priority: Optional[StrictStr] = Field(default=None, max_length=200)
    maxResults: Optional[StrictInt] = Field(default=None, ge=1)


class FetchTicketsMessage(InboundMessage):
    type: Literal["fetch-tickets"]
    filters: TicketFilters = Field(default_factory=TicketFilters)


class SelectTicketMessage(InboundMessage):
    type: Literal["select-ticket"]
    ticketIndex: StrictInt


class PongMessage(InboundMessage):
    type: Literal["pong"]


ClientMessage = Annotated[
    Union[
        JoinMessage,
        CastVoteMessage,
        RevealVotesMessage,
        SetFinalResultMessage,
        CompleteVotingMessage,
        SetTicketSourceConfigMessage,
        FetchTicketsMessage,
        SelectTicketMessage,
        PongMessage,
    ],
    Field(discriminator="type"),
]

CLIENT_MESSAGE_CLASSES = get_args(get_args(ClientMessage)[0])
MESSAGE_TYPES = frozenset(
    get_args(model.model_fields["type"].annotation)[0] for model in CLIENT_MESSAGE_CLASSES
)

_client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)


def parse_client_message(data: Any):
    """Validate a decoded frame into its message model; raises ``ValidationError``."""
    return _client_message_adapter.validate_python(data)


def describe_validation_error(exc: ValidationError) -> str:
    """Collapse a pydantic error into one client-facing sentence."""
    errors = exc.errors()
    if not errors:
        return "Invalid message"
    first = errors[0]
    # loc[0] is the discriminator tag of the failing message kind
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid value")
    if location:
        return f"Invalid message: {location}: {message}"
    return f"Invalid message: {message}"
