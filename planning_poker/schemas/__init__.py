from .messages import (
    ClientMessage,
    MESSAGE_TYPES,
    parse_client_message,
)

__all__ = [
    "ClientMessage",
    "MESSAGE_TYPES",
    "parse_client_message",
]
