"""Custom exceptions for devwebify package.

Only structural failures are raised as exceptions. Problems confined to a
single request (malformed URL, body that is not JSON, unsupported script
lines, unresolved variables) are downgraded to ``ConversionWarning`` records
and never abort a conversion.
"""


class DevwebifyError(Exception):
    """Base exception class for all devwebify errors."""


class CollectionParseError(DevwebifyError):
    """Raised when a collection or environment file cannot be read or parsed."""


class OutputWriteError(DevwebifyError):
    """Raised when generated files cannot be written to the output location.

    Attributes:
        path: The path that could not be written.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigurationError(DevwebifyError):
    """Raised when generator options or settings are invalid."""
