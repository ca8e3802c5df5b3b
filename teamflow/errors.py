"""
Error taxonomy for the service.

Every error carries the HTTP status it is surfaced with; the app renders them
as a JSON ``{"error": message}`` body.
"""


class TeamflowError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(TeamflowError):
    """Missing or invalid bearer token."""
    status_code = 401


class AuthorizationError(TeamflowError):
    """Authenticated user lacks team membership or role."""
    status_code = 403


class ValidationError(TeamflowError):
    status_code = 400


class NotFoundError(TeamflowError):
    status_code = 404


class UpstreamGenerationError(TeamflowError):
    """The model call failed or returned content we could not parse."""
    status_code = 502


class PersistenceError(TeamflowError):
    """The store rejected a read or write."""
    status_code = 500
