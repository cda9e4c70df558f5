"""Error taxonomy shared by the controller client, search and HTTP layer.

Every error carries the HTTP status and the message that may be shown to the
caller. Upstream details stay in the server log.
"""


class DashboardError(Exception):
    """Base class for errors surfaced to dashboard callers."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)

    @property
    def message(self) -> str:
        return self.public_message


class ValidationError(DashboardError):
    """Missing or malformed user input. The message is user-correctable."""

    status_code = 400

    @property
    def message(self) -> str:
        return str(self)


class AccessDeniedError(DashboardError):
    status_code = 403
    public_message = "Access denied"


class NotFoundError(DashboardError):
    status_code = 404

    @property
    def message(self) -> str:
        return str(self)


class ConflictError(DashboardError):
    status_code = 409

    @property
    def message(self) -> str:
        return str(self)


class AuthError(DashboardError):
    """Controller login failed. Never echo the reason to the caller."""

    status_code = 500
    public_message = "Internal error"


class UpstreamError(DashboardError):
    """Controller returned an error status or an unusable payload."""

    status_code = 502
    public_message = "Controller request failed"
