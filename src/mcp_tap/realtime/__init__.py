"""Real-time delivery of captured events to remote observers."""

from .hub import BroadcastHub, ObserverConnection, parse_client_message

__all__ = ["BroadcastHub", "ObserverConnection", "parse_client_message"]
