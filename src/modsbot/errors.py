"""
Exception hierarchy shared by the gateway, router and command handlers.

The router decides what (if anything) reaches the chat channel from the
exception type alone:

- :class:`PermissionDenied` and :class:`NotFoundError` carry user-facing text.
- :class:`CommandUsageError` shows the usage line of the command.
- Everything else, :class:`ExternalServiceError` included, gets the generic
  failure reply while the detail goes to the log.
- :class:`TransportError` and :class:`FatalGatewayError` never leave the
  gateway layer / process bootstrap.
"""

from __future__ import annotations


class ModsBotError(Exception):
    """Base class for all errors raised by modsbot itself."""


class TransportError(ModsBotError):
    """The gateway connection dropped or stopped answering; recovered by reconnecting."""

    def __init__(self, message: str, *, close_code: int | None = None, resumable: bool = True) -> None:
        super().__init__(message)
        self.close_code = close_code
        self.resumable = resumable


class FatalGatewayError(ModsBotError):
    """The platform rejected the session in a way reconnecting cannot fix (bad token, bad intents...)."""

    def __init__(self, message: str, *, close_code: int | None = None) -> None:
        super().__init__(message)
        self.close_code = close_code


class PermissionDenied(ModsBotError):
    """The invoking user lacks the role required by the command."""


class NotFoundError(ModsBotError):
    """A looked-up entity (tag, crate, member) does not exist; shown verbatim as an informational reply."""


class CommandUsageError(ModsBotError):
    """The argument tail could not be parsed by the handler."""


class ExternalServiceError(ModsBotError):
    """A dependency outside the chat platform (registry, storage) failed."""
