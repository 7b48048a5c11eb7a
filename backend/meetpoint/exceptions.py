"""Exception hierarchy for the meetpoint pipeline.

Only a few of these ever reach the API layer: ``InvalidInput``,
``GeocodingFailure``, ``TierRequired`` and ``RateLimitExceeded``.
``ProviderError`` is raised by the transport layer and recovered by the
component that owns the fallback (route synthesis, haversine matrix,
partial POI results).
"""


class MeetpointError(Exception):
    """Base class for all pipeline errors."""


class InvalidInput(MeetpointError, ValueError):
    """Malformed address, coordinates or request shape. No provider was called."""


class ProviderError(MeetpointError):
    """An upstream geodata provider failed.

    Attributes:
        provider: Short provider name used in logs (e.g. ``"osrm"``).
        status_code: HTTP status when the provider answered, else None.
        transient: Whether retrying the same call might succeed.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.transient = transient


class GeocodingFailure(MeetpointError):
    """Every geocoding provider failed or returned no match for an address."""

    def __init__(self, address: str, origin_index: int | None = None) -> None:
        super().__init__(f"Could not geocode address: {address!r}")
        self.address = address
        self.origin_index = origin_index


class RateLimitExceeded(MeetpointError):
    """The caller exhausted its quota. Never retried inside the pipeline."""

    def __init__(self, caller_class: str, limit: int, retry_after: float) -> None:
        super().__init__(
            f"Rate limit exceeded for {caller_class} caller "
            f"({limit} requests); retry after {retry_after:.0f}s"
        )
        self.caller_class = caller_class
        self.limit = limit
        self.retry_after = retry_after


class TierRequired(MeetpointError):
    """The request needs a higher service tier (e.g. more than two origins)."""
