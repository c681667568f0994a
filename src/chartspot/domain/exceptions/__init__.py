"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so callers can inspect it without
    # parsing str(exception). Don't raise this directly - always use a specific subclass so
    # callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("concurrency_limit must be >= 1")
    """

    pass


# =============================================================================
# Chart source errors
# =============================================================================


class SourceError(DomainException):
    """Base class for chart source failures."""

    pass


class SourceNotFoundError(SourceError):
    """No local chart file exists in any candidate location."""

    def __init__(self, filename: str, searched: int = 0) -> None:
        super().__init__(
            f"Chart file '{filename}' not found ({searched} locations searched)"
        )
        self.filename = filename
        self.searched = searched


class SourceParseError(SourceError):
    """A chart file or body was found but could not be decoded.

    Raised for invalid JSON, wrong shape, and duplicate ranks. Always chained to
    the underlying decode error when there is one.
    """

    def __init__(self, message: str, location: str | None = None) -> None:
        super().__init__(message)
        self.location = location


class SourceNetworkError(SourceError):
    """Remote chart could not be fetched.

    Hey future me - size_exceeded tells "server sent too much" apart from the
    usual transient failures (timeouts, 5xx, DNS). Only the former is worth
    showing to the user as a configuration problem.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        size_exceeded: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.size_exceeded = size_exceeded


class SourceTooLargeError(SourceNetworkError):
    """Remote body exceeded the configured byte budget."""

    def __init__(self, url: str, max_bytes: int) -> None:
        super().__init__(
            f"Remote chart at {url} exceeds {max_bytes} bytes",
            url=url,
            status_code=413,
            size_exceeded=True,
        )
        self.max_bytes = max_bytes


# =============================================================================
# Enrichment errors
# =============================================================================


class EnrichmentError(DomainException):
    """Base class for metadata lookup failures."""

    def __init__(self, message: str, title: str = "", artist: str = "") -> None:
        super().__init__(message)
        self.title = title
        self.artist = artist


class EnrichmentNoResultsError(EnrichmentError):
    """The lookup answered definitively with zero matching tracks."""

    def __init__(self, title: str, artist: str) -> None:
        super().__init__(f"No results for '{title}' by '{artist}'", title, artist)


class EnrichmentNetworkError(EnrichmentError):
    """The lookup failed after retries, or the response was undecodable."""

    def __init__(
        self, title: str, artist: str, attempts: int = 1, reason: str = ""
    ) -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Lookup for '{title}' by '{artist}' failed after {attempts} attempt(s){detail}",
            title,
            artist,
        )
        self.attempts = attempts


# =============================================================================
# Cache errors
# =============================================================================


class CacheIOError(DomainException):
    """Persisting or loading a cache snapshot failed.

    Never escapes the cache - cache correctness is defined over in-memory state.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


__all__ = [
    "CacheIOError",
    "ConfigurationError",
    "DomainException",
    "EnrichmentError",
    "EnrichmentNetworkError",
    "EnrichmentNoResultsError",
    "SourceError",
    "SourceNetworkError",
    "SourceNotFoundError",
    "SourceParseError",
    "SourceTooLargeError",
]
