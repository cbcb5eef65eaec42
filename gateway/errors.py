"""Gateway exception types."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = 500

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class PayloadTooLarge(GatewayError):
    """Request body exceeded the configured body parser limit."""

    status_code = 413

    def __init__(self, limit: int, received: int) -> None:
        super().__init__(f"request body of {received} bytes exceeds limit of {limit} bytes")
        self.limit = limit
        self.received = received


class MalformedBody(GatewayError):
    """Request body could not be decoded for its declared content type."""

    status_code = 400


class DataLayerTimeout(GatewayError):
    """The data layer did not answer a CRUD event in time."""

    status_code = 504


class DataLayerError(GatewayError):
    """The data layer answered a CRUD event with an error payload."""

    def __init__(self, payload) -> None:
        super().__init__(str(payload))
        self.payload = payload
