"""Event name constants.

Learn: Centralizing event names as constants prevents typos between the
server, the Python client and the browser client. Names prefixed with
"relay:" are protocol events owned by the relay itself; everything else
is an application event that producers publish and clients bind to.
"""

# ─── Application events ──────────────────────────────────

MESSAGE_IN = "message-in"

# ─── Client → relay ──────────────────────────────────────

SUBSCRIBE = "relay:subscribe"
UNSUBSCRIBE = "relay:unsubscribe"
PING = "relay:ping"

# ─── Relay → client ──────────────────────────────────────

CONNECTION_ESTABLISHED = "relay:connection_established"
SUBSCRIPTION_SUCCEEDED = "relay:subscription_succeeded"
UNSUBSCRIBED = "relay:unsubscribed"
SUBSCRIPTION_COUNT = "relay:subscription_count"
PONG = "relay:pong"
ERROR = "relay:error"

PROTOCOL_PREFIX = "relay:"


def is_protocol_event(name: str) -> bool:
    """Protocol events may not be published by producers."""
    return name.startswith(PROTOCOL_PREFIX)
