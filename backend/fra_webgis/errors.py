from typing import Optional


class FetchError(Exception):
    """Base class for failures talking to the upstream WebGIS API."""


class NetworkError(FetchError):
    """Raised when a request fails before any response is received."""


class ServerError(FetchError):
    """Raised on a non-success status or a payload carrying an ``error`` field."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DataUnavailable(ServerError):
    """Raised when ``/status`` reports that no classified data exists yet."""


class MalformedPayload(FetchError):
    """Raised when a response body does not match the expected shape."""


class ReloadSuperseded(Exception):
    """Raised to the caller of a reload whose response arrived after a newer request."""

    def __init__(self, generation: int, latest: int):
        super().__init__(f"Reload {generation} superseded by reload {latest}")
        self.generation = generation
        self.latest = latest
