"""HeyReach outbound integration."""

from magnetlab_signals.integrations.heyreach.client import HeyReachClient, HeyReachClientError, get_heyreach_client

__all__ = ["HeyReachClient", "HeyReachClientError", "get_heyreach_client"]
