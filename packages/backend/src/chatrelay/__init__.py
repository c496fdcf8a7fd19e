"""chatrelay — self-hosted channel relay for a group-chat demo.

Producers publish events over HTTP, clients join named channels over a
WebSocket and receive every event published to those channels while
they are members. Delivery is live broadcast: no history, no retries.
"""

__version__ = "0.1.0"
