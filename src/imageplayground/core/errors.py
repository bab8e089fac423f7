"""Exception hierarchy for Image Playground.

Every error raised by the core carries the HTTP status code it maps to and a
message that is safe to show to the caller.  The API layer registers a single
exception handler for :class:`PlaygroundError` that renders
``{"error": message}`` with ``status_code``.

Partial bulk-deletion failures are not exceptions; they are reported through
:class:`~imageplayground.core.storage.DeletionReport`.
"""


class PlaygroundError(Exception):
    """Base class for errors that are reported to the HTTP caller.

    Attributes:
        message: User-facing message returned in the response body.
        status_code: HTTP status code for the response.
    """

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRequestError(PlaygroundError):
    """Malformed or out-of-range request input (400)."""

    status_code = 400


class AuthError(PlaygroundError):
    """Missing or wrong password hash (401)."""

    status_code = 401


class NotFoundError(PlaygroundError):
    """Requested image does not exist (404)."""

    status_code = 404


class UpstreamError(PlaygroundError):
    """The image provider failed or returned an unusable response (500)."""

    status_code = 500


class InternalError(PlaygroundError):
    """Unexpected filesystem or configuration failure (500).

    The message must stay generic; details belong in the logs.
    """

    status_code = 500
