"""Custom exceptions for the sourcing pipeline."""

from typing import Any, Optional


class SourcingError(Exception):
    """Base exception for the sourcing pipeline."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ProviderUnavailable(SourcingError):
    """Text generation call failed (no credential, HTTP error, network error)."""

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.provider = provider
        self.status_code = status_code

    @property
    def is_quota_or_missing_model(self) -> bool:
        """429 (quota) and 404 (model not found) are the escalation triggers."""
        return self.status_code in (404, 429)


class MalformedResponse(SourcingError):
    """Generation output is not JSON or lacks required fields."""

    pass


class PortalBlocked(SourcingError):
    """
    The marketplace is actively blocking the scraper.

    Fatal for the current job's search phase.
    """

    def __init__(self, url: str = "", context: Optional[dict[str, Any]] = None):
        message = f"Portal blocked access at {url}" if url else "Portal blocked access"
        super().__init__(message, context)
        self.url = url


class DetailFetchError(SourcingError):
    """Fetching a single listing's detail page failed."""

    def __init__(self, link: str, reason: str, context: Optional[dict[str, Any]] = None):
        super().__init__(f"Detail fetch failed for {link}: {reason}", context)
        self.link = link
        self.reason = reason


class TemplateMissing(SourcingError):
    """Prompt template resource could not be read."""

    def __init__(self, name: str, context: Optional[dict[str, Any]] = None):
        super().__init__(f"Prompt template not found: {name}", context)
        self.name = name


class PageAcquisitionError(SourcingError):
    """Could not open a browser page for the job."""

    pass
