from typing import Optional


class LedgerError(ValueError):
    pass


class NotFound(LedgerError):
    pass


class Conflict(LedgerError):
    pass


class InvalidRange(LedgerError):
    pass


class ValidationError(LedgerError):
    """Raised when the store refuses a write (shape, kind or reference checks)."""


class FormatError(LedgerError):
    """A CSV line that cannot be parsed. Fatal to the whole import."""

    def __init__(self, message: str, line: Optional[int] = None) -> None:
        super().__init__(message)
        self.line = line


class ResolutionError(LedgerError):
    """A CSV row naming an account or category that does not exist."""

    def __init__(self, message: str, line: int) -> None:
        super().__init__(message)
        self.line = line
