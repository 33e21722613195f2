"""Error taxonomy for the session core."""

from __future__ import annotations


class RepoChatError(Exception):
    """Base class for errors raised by repo-chat."""


class MissingCredentialError(RepoChatError):
    """No API key is configured for the generation backend."""


class InvalidCredentialError(RepoChatError):
    """The backend rejected the API key or the request."""


class GenerationError(RepoChatError):
    """The backend failed while producing a response."""


class RepoSourceError(RepoChatError):
    """Fetching or diffing the repository failed."""


class SendInProgressError(RepoChatError):
    """A send was started while another one is in flight for the same session."""


_CREDENTIAL_STATUS_CODES = frozenset({400, 401, 403})
_CREDENTIAL_HINTS = ("api key", "api_key", "apikey", "permission denied", "unauthenticated")


def classify_backend_error(exc: BaseException) -> type[RepoChatError]:
    """Map a backend exception to either a credential problem or a generic failure.

    Inspects an HTTP status code when the exception carries one (pydantic-ai's
    ``ModelHTTPError`` and httpx errors do) and otherwise falls back to the
    message text.
    """
    if isinstance(exc, (MissingCredentialError, InvalidCredentialError)):
        return type(exc)
    status = getattr(exc, "status_code", None)
    response = getattr(exc, "response", None)
    if status is None and response is not None:
        status = getattr(response, "status_code", None)
    if status in _CREDENTIAL_STATUS_CODES:
        return InvalidCredentialError
    text = str(exc).lower()
    if any(hint in text for hint in _CREDENTIAL_HINTS):
        return InvalidCredentialError
    return GenerationError
