#!/usr/bin/env python3
"""Common error types shared across modules.

Listing-level errors end a reload with no feed; item-level errors are
absorbed by the enrichment pool and only degrade the affected item.
"""

from typing import Optional


class AutoFeedError(Exception):
    """Base class for all feed synthesis errors."""


class MalformedSchemeError(AutoFeedError):
    """Raised when a pseudo-URI cannot be split into its required parts."""

    def __init__(self, message: str, uri: Optional[str] = None):
        super().__init__(message)
        self.uri = uri


class FetchError(AutoFeedError):
    """Raised when a page cannot be retrieved.

    Attributes:
        url: The URL that failed.
        status: HTTP status code, when the server answered at all.
    """

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class NotModifiedError(FetchError):
    """Raised when a conditional request is answered with HTTP 304."""

    def __init__(self, url: Optional[str] = None):
        super().__init__(f"Not modified: {url}", url=url, status=304)


class FetchCancelled(AutoFeedError):
    """Raised by the opener when the cancellation token fires mid-request."""


class InvalidLinkError(AutoFeedError):
    """Raised when an item href cannot be turned into an absolute URI."""

    def __init__(self, message: str, href: Optional[str] = None):
        super().__init__(message)
        self.href = href


class SelectorError(AutoFeedError):
    """Raised when a CSS selector cannot be compiled."""

    def __init__(self, message: str, selector: Optional[str] = None):
        super().__init__(message)
        self.selector = selector


class EnrichmentFailure(AutoFeedError):
    """Raised when an item page lacks the structure needed to build content."""


__all__ = [
    "AutoFeedError",
    "MalformedSchemeError",
    "FetchError",
    "NotModifiedError",
    "FetchCancelled",
    "InvalidLinkError",
    "SelectorError",
    "EnrichmentFailure",
]
