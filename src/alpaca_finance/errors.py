"""Exception hierarchy for Alpaca API calls and streaming."""

from typing import Optional


class AlpacaError(Exception):
    """Base class for every error raised by this library."""


class InvalidCredentials(AlpacaError):
    """The key ID or secret key were not accepted."""

    def __init__(self, message: str = "The key ID or secret key were not accepted"):
        super().__init__(message)


class RequestFailed(AlpacaError):
    """Transport-level failure (DNS, TLS, connection refused, timeout)."""

    def __init__(self, message: str = "Alpaca call failed for unknown reason"):
        super().__init__(message)


class CallFailed(AlpacaError):
    """Alpaca answered with an unexpected HTTP status."""

    def __init__(self, url: str, status: int):
        self.url = url
        self.status = status
        super().__init__(f"Alpaca call failed. '{url}' returned a {status} result")


class Unavailable(CallFailed):
    """Alpaca answered with a server error."""


class BadData(AlpacaError):
    """The response body could not be decoded."""

    def __init__(self, message: str = "Alpaca returned invalid data"):
        super().__init__(message)


class OrderInvalid(AlpacaError):
    """Client-side order validation failed; nothing was sent."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"The order is invalid. {reason}")


class OrderForbidden(AlpacaError):
    """The order was refused, usually for lack of buying power."""

    def __init__(self, message: str = "The order cannot be submitted due to lack of buying power"):
        super().__init__(message)


class OrderNotCancelable(AlpacaError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"The order '{order_id}' cannot be canceled")


class OrderNotFound(AlpacaError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"The order '{order_id}' was not found")


class StreamingFailed(AlpacaError):
    """The websocket connection failed or was lost."""

    def __init__(self, message: str = "Alpaca websocket connection failed for unknown reason"):
        super().__init__(message)


class InternalURL(AlpacaError):
    def __init__(self, url: str, reason: str = ""):
        self.url = url
        super().__init__(
            f"An internal error occurred - please report that '{url}' cannot be parsed: {reason}"
        )


class InternalJSON(AlpacaError):
    def __init__(self, message: str = "An internal error occurred while encoding JSON"):
        super().__init__(message)


class Unknown(AlpacaError):
    """Unclassified failure, usually an unexpected status on an order call."""

    def __init__(self, status: Optional[int] = None):
        self.status = status
        message = "An unexpected error occurred"
        if status is not None:
            message = f"{message} (HTTP {status})"
        super().__init__(message)


class MessageDecodeError(AlpacaError):
    """A single stream frame could not be decoded."""
