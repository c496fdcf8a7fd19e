"""Relay error kinds.

Learn: Every failure in the relay is scoped to one request or one
connection. None of these ever take the process down:

- InvalidRequest: malformed publish/subscribe input, rejected before any
  state is touched (HTTP 400, or a relay:error frame on a WebSocket).
- Unsubscribing from an unknown channel and subscribing twice are not
  errors at all; the directory treats both as no-ops.
- TransportFailure: one recipient's send failed; the recipient is torn
  down and fan-out continues for everyone else.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidRequest(RelayError):
    """Raised when publish or subscribe input is malformed."""

    code = 4000


class TransportFailure(RelayError):
    """Raised when sending to (or closing) a client transport fails."""


class InvalidTransition(RelayError):
    """Raised when a connection is asked to move to an illegal state."""


class ConnectionNotFound(RelayError):
    """Raised when a connection id is not (or no longer) registered."""
