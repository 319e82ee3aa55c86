"""Error taxonomy shared by the QVoiceTxt gateway, store and scheduler.

Every handler boundary in the router converts these into a bot-visible reply;
none of them is allowed to escape ``CommandRouter.route``.
"""

from typing import Optional


class QVoiceError(Exception):
    """Base class for all QVoiceTxt errors."""


class ValidationError(QVoiceError):
    """Malformed command arguments. User-correctable, surfaced with usage help."""

    def __init__(self, message: str, usage: Optional[str] = None):
        super().__init__(message)
        self.usage = usage


class GatewayError(QVoiceError):
    """Failure talking to the external generative-content API."""


class ServiceUnavailable(GatewayError):
    """Transport failures or rate limiting exhausted every attempt."""


class MalformedResponse(GatewayError):
    """The API answered, but not in the shape the caller expected.

    A higher layer may rebuild the prompt and retry; ServiceUnavailable should not.
    """


class ApiStatusError(GatewayError):
    """Non-success, non-429 HTTP status. Never retried."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"API call failed with status: {status_code}")
        self.status_code = status_code
        self.body = body


class StoreError(QVoiceError):
    """Durable store read/write failure."""


class SessionTransitionError(QVoiceError):
    """A session phase transition was attempted out of order."""
