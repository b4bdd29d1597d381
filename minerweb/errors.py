"""
minerweb - Error Taxonomy
===========================
Exceptions raised by the control plane and the HTTP status each one maps to.

Every error carries a short public message. Internal details (paths,
backend addresses, exception text) go to the log, never into the response,
so a client cannot tell a blocked traversal from a missing file or a
refused backend connection from a timeout.

Mapping:
    AuthError               -> 401  (invalid credentials, expired session)
    BadRequestError         -> 400  (malformed parameters)
    NotFoundError           -> 404  (unknown route, missing asset)
    BackendUnavailableError -> 502  (forwarding target unreachable)
    TemplateLoadError       -> 500  (page fragment unreadable)
"""


class ControlPlaneError(Exception):
    """Base class for errors that become an HTTP error response."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class AuthError(ControlPlaneError):
    status_code = 401
    public_message = "Invalid credentials"


class BadRequestError(ControlPlaneError):
    status_code = 400
    public_message = "Bad request"


class NotFoundError(ControlPlaneError):
    status_code = 404
    public_message = "Not found"


class BackendUnavailableError(ControlPlaneError):
    status_code = 502
    public_message = "Backend unavailable"


class TemplateLoadError(ControlPlaneError):
    status_code = 500
    public_message = "Page unavailable"
