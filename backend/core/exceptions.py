"""Custom exception hierarchy for Miktsoan."""


class MiktsoanError(Exception):
    """Base error."""
    def __init__(self, message: str, code: str = "MIKTSOAN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthError(MiktsoanError):
    """Authentication / authorization failures."""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_ERROR")


class InvalidIdentifierError(MiktsoanError):
    """Phone identifier failed validation before a code was issued."""
    def __init__(self, message: str = "Invalid phone number"):
        super().__init__(message, code="INVALID_IDENTIFIER")


class RateLimitedError(MiktsoanError):
    """Challenge request throttled. Recoverable: retry later."""
    def __init__(self, message: str = "Too many attempts. Please try again later."):
        super().__init__(message, code="RATE_LIMITED")


class InvalidCodeError(MiktsoanError):
    """Submitted code does not match, expired, or was already used."""
    def __init__(self, message: str = "Invalid code"):
        super().__init__(message, code="INVALID_CODE")


class BackendUnavailableError(MiktsoanError):
    """AI backend has no credential configured."""
    def __init__(self, message: str = "AI backend is not configured"):
        super().__init__(message, code="BACKEND_UNAVAILABLE")


class BackendCallFailedError(MiktsoanError):
    """AI backend call errored at runtime."""
    def __init__(self, message: str = "AI backend call failed"):
        super().__init__(message, code="BACKEND_CALL_FAILED")


class StorageCorruptError(MiktsoanError):
    """Durable state snapshot could not be read."""
    def __init__(self, message: str = "State snapshot is corrupt"):
        super().__init__(message, code="STORAGE_CORRUPT")


class RelayError(MiktsoanError):
    """Relay protocol violations (missing room, unknown event)."""
    def __init__(self, message: str = "Relay error"):
        super().__init__(message, code="RELAY_ERROR")
