"""Error taxonomy for the signal intake pipeline."""

from __future__ import annotations


class SignalPipelineError(RuntimeError):
    """Base class for signal pipeline failures."""


class TransientNetworkError(SignalPipelineError):
    """Scraping or outreach API unreachable, rate-limited or failing."""


class MalformedProfileError(SignalPipelineError):
    """Scraped profile data that cannot be turned into a lead."""


class PersistenceError(SignalPipelineError):
    """Lead store read or write failure."""

    def __init__(self, message: str, *, linkedin_url: str | None = None) -> None:
        super().__init__(message)
        self.linkedin_url = linkedin_url


class ConfigurationError(SignalPipelineError):
    """Workspace configuration missing or unusable for a job."""
