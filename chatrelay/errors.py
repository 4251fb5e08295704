"""Error taxonomy for the relay core.

Every error carries the HTTP status code and the visitor-facing message.
Internal detail belongs in the server log, never in ``public_message``.
"""

from __future__ import annotations


class RelayError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, public_message: str | None = None, detail: str | None = None) -> None:
        if public_message is not None:
            self.public_message = public_message
        self.detail = detail
        super().__init__(detail or self.public_message)


class ValidationError(RelayError):
    status_code = 400
    public_message = "Invalid request"


class AuthError(RelayError):
    status_code = 401
    public_message = "Invalid signature"


class OriginRejected(RelayError):
    status_code = 403
    public_message = "Origin not allowed"


class NotFoundError(RelayError):
    status_code = 404
    public_message = "Chatbot not found"


class RateLimitExceeded(RelayError):
    status_code = 429
    public_message = "Too many requests, please try again later"


class UpstreamRateLimited(RelayError):
    status_code = 429
    public_message = "Too many requests. Please wait a moment."


class UpstreamUnavailable(RelayError):
    status_code = 502
    public_message = "The AI service is temporarily unavailable."


class UpstreamTimeout(RelayError):
    status_code = 504
    public_message = "Request timed out. The AI is taking too long to respond."
