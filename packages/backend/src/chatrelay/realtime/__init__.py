"""Real-time relay core — in-process channel pub/sub over WebSockets.

Learn: Events flow one way, through two doors:
1. Producers → IngressGateway.publish → DeliveryEngine (HTTP side)
2. DeliveryEngine → each member's transport → client (WebSocket side)

Clients manage their own memberships over the WebSocket through the
SessionManager, which keeps the ConnectionRegistry and ChannelDirectory
consistent with each other.
"""
