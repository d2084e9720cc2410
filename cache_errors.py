from typing import Optional


class CapacityError(ValueError):
    """Raised when a cache is constructed with a capacity below 1."""


class PersistError(Exception):
    """
    Base class for failures of the persistence layer.

    Args:
        message: Human readable description.
        path: The storage location involved, if known.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class IoFailure(PersistError):
    """Reading or writing the storage file failed."""


class DecodeFailure(PersistError):
    """
    The storage file could not be parsed into cache entries.
    `line_number` is 1-based and None when the failure is not tied to a line.
    """

    def __init__(self, message: str, path: Optional[str] = None, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"{message} (line {line_number})"
        super().__init__(message, path)
        self.line_number = line_number
