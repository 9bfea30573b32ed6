class RestowError(Exception):
    """Base error for the project."""


class ConfigError(RestowError):
    pass


class TemplateValidationError(RestowError, ValueError):
    """Raised when a storage template contains an unrecognized token."""

    def __init__(self, message: str, token: str = None):
        super().__init__(message)
        self.token = token


class AssetNotFoundError(RestowError):
    pass


class IntegrityMismatchError(RestowError):
    """Size or checksum of a file on disk differs from the catalog."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{reason} for {path}")
        self.path = path
        self.reason = reason


class DisambiguationExhaustedError(RestowError):
    def __init__(self, path: str, attempts: int):
        super().__init__(f"No free name for {path} after {attempts} attempts")
        self.path = path
        self.attempts = attempts
