"""
Domain error taxonomy for the render gateway.

Services raise these exceptions; the HTTP layer is the only place that
maps them onto status codes. None of them carry response bodies.
"""


class GatewayError(RuntimeError):
    """Base class for all gateway failures."""


class InvalidRequest(GatewayError):
    """Raised when a required request field is missing or unusable."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is required")


class StorageUnavailable(GatewayError):
    """Raised when the artifact store or template directory cannot be used."""


class RenderFailed(GatewayError):
    """Raised when the rendering engine reports an error."""


class RenderTimeout(RenderFailed):
    """Raised when the rendering engine does not return in time."""


class EmailDeliveryFailed(GatewayError):
    """Raised when an email directive is malformed or cannot be sent."""
