"""Harvest LinkedIn scraping integration."""

from magnetlab_signals.integrations.harvest.client import HarvestClient, HarvestClientError, get_harvest_client

__all__ = ["HarvestClient", "HarvestClientError", "get_harvest_client"]
