"""
Error types shared by the persistence layer, vendor clients and routes.
"""

from __future__ import annotations

from typing import Optional

# Error codes and message fragments raised by firebase_admin / google-auth
# when credentials or the project id cannot be resolved.
CONFIGURATION_ERROR_CODES = {
    "app/invalid-credential",
    "app/invalid-app-options",
    "auth/invalid-credential",
    "auth/project-not-found",
}

CONFIGURATION_ERROR_PATTERNS = (
    "credential introuvable",
    "default credentials",
    "application default credential",
    "could not load the default credentials",
    "credential implementation provided",
    "unable to detect a project id",
    "failed to determine project id",
    "service account",
    "private key",
    "client_email",
    "invalid grant",
    "invalid_grant",
)


class ApiError(Exception):
    """Raised by route handlers; rendered as ``{"error": message}``."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class BackendUnavailableError(RuntimeError):
    """The persistence backend could not be reached or failed mid-request."""


class BackendConfigurationError(BackendUnavailableError):
    """The persistence backend is missing credentials or a project id."""


class UpstreamError(Exception):
    """A third-party API answered with an error or could not be reached."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def is_configuration_error(error: BaseException) -> bool:
    if isinstance(error, BackendConfigurationError):
        return True
    code = getattr(error, "code", None)
    if isinstance(code, str) and code.strip().lower() in CONFIGURATION_ERROR_CODES:
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in CONFIGURATION_ERROR_PATTERNS)


def configuration_error_message(
    error: Optional[BaseException], *, production: bool
) -> str:
    if production:
        return "Service unavailable."
    detail = str(error).strip() if error is not None else ""
    if detail:
        return f"Backend not configured ({detail})."
    return "Backend not configured."
