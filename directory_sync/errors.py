"""
Error taxonomy for the directory sync engine.

Every error carries a stable ``code`` (used as the ``error`` field of the
response envelope) and the HTTP status the route layer maps it to.
"""


class DirectorySyncError(Exception):
    """Base exception for directory sync errors."""
    code = "DirectorySyncError"
    status_code = 500


class ConfigurationError(DirectorySyncError):
    """Missing credentials or a disabled feature."""
    code = "ConfigurationError"
    status_code = 400


class AuthError(DirectorySyncError):
    """Token provider returned no token or refused the credential."""
    code = "AuthError"
    status_code = 401


class ConnectivityError(DirectorySyncError):
    """Remote directory API unreachable, timed out or returned an error."""
    code = "ConnectivityError"
    status_code = 502


class SchemaError(DirectorySyncError):
    """A schema cannot be inferred (e.g. from zero sample records)."""
    code = "SchemaError"
    status_code = 500


class ValidationError(DirectorySyncError):
    """Malformed or missing override record fields."""
    code = "ValidationError"
    status_code = 400


class ConflictError(DirectorySyncError):
    """Identity already in use by another record."""
    code = "ConflictError"
    status_code = 409


class NotFoundError(DirectorySyncError):
    """Unknown record id."""
    code = "NotFound"
    status_code = 404


def status_for_code(code: str) -> int:
    """HTTP status for an envelope error code (500 when unknown)."""
    pending = [DirectorySyncError]
    while pending:
        cls = pending.pop()
        if cls.code == code:
            return cls.status_code
        pending.extend(cls.__subclasses__())
    return 500
