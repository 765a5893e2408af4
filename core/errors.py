# core/errors.py

"""
Error taxonomy for the sync layer and the edge-function routes.

    CondoSyncError
      ├── ValidationError      malformed / missing input, raised before any backend call
      ├── AuthError            credential or session failures
      ├── BackendError         RPC / table / channel failure (network and timeouts included)
      ├── NotFoundError        referenced entity absent
      └── PartialFailureError  multi-step operation compensated after a later step failed
"""

from typing import Any, Dict, Optional


class CondoSyncError(Exception):
    """Base exception. Carries a machine-readable ``code`` and extra ``details``."""

    default_code = "CONDO_SYNC_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


class ValidationError(CondoSyncError):
    default_code = "MISSING_FIELDS"

    def __init__(self, message: str, field_name: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, code=code, details={"field": field_name} if field_name else None)
        self.field_name = field_name


class AuthError(CondoSyncError):
    default_code = "AUTH_ERROR"


class BackendError(CondoSyncError):
    default_code = "BACKEND_ERROR"

    # Transient failures are worth retrying from the UI
    retryable = True


class NotFoundError(CondoSyncError):
    default_code = "NOT_FOUND"


class PartialFailureError(CondoSyncError):
    """
    An earlier step succeeded and was rolled back because a later one failed.
    ``compensated`` tells whether the rollback itself went through.
    """

    default_code = "PARTIAL_FAILURE"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        compensated: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.compensated = compensated


def extract_supabase_error(error: Exception) -> str:
    """
    Safely extract readable details from Supabase Python client errors.
    Handles:
      • PostgREST errors
      • GoTrue (Auth) errors
      • Generic Python exceptions
    """

    # Case 1: Supabase Auth / GoTrue errors
    if hasattr(error, "message"):
        try:
            return str(error.message)
        except Exception:
            pass

    # Case 2: Supabase errors with args (common)
    if hasattr(error, "args") and error.args:
        try:
            return str(error.args[0])
        except Exception:
            pass

    # Case 3: Plain string fallback
    try:
        return str(error)
    except Exception:
        return "Unknown Supabase error"


def supabase_error(error: Exception, message: str = "Supabase error"):
    """
    Convert Supabase / database errors into a BackendError.
    Always raises: caller should wrap with try/except.
    """

    detail = extract_supabase_error(error)
    raise BackendError(f"{message}: {detail}") from error


def is_session_missing(error: Exception) -> bool:
    """True when the backend says the session is already gone (expired or revoked)."""
    detail = extract_supabase_error(error).lower()
    return "auth session missing" in detail or "session not found" in detail


# HTTP status per error code for the edge-function routes.
# Anything not listed is a 500.
FUNCTION_STATUS_CODES = {
    "MISSING_FIELDS": 400,
    "AUTH_ERROR": 400,
    "PROFILE_ERROR": 400,
    "PROFILE_UPDATE_ERROR": 400,
    "USER_NOT_FOUND": 400,
    "USER_CREATION_FAILED": 500,
    "INTERNAL_ERROR": 500,
}


def http_status_for(error: CondoSyncError) -> int:
    if error.code in FUNCTION_STATUS_CODES:
        return FUNCTION_STATUS_CODES[error.code]
    if isinstance(error, (ValidationError, AuthError, PartialFailureError, NotFoundError)):
        return 400
    return 500
