"""Custom exceptions for the control plane.

Every failure surfaced to a caller is a ``CoreError`` carrying one of a closed
set of kinds plus a human-readable message. The kinds are:
- ``CoreNotFound``: the core executable could not be launched
- ``ConfigFormatError``: the base configuration could not be parsed or rewritten
- ``ConfigNotFound``: the base configuration file does not exist
- ``RuleProviderDownloadError``: a rule provider could not be fetched or saved
- ``NetworkError``: applying or restoring system network settings failed
- ``Default``: anything uncategorized

Example:
    try:
        supervisor.run(config_path)
    except CoreError as e:
        return e.to_dict()
"""

from enum import Enum


class ErrorKind(Enum):
    """Closed set of error kinds reported to callers."""

    CORE_NOT_FOUND = "CoreNotFound"
    CONFIG_FORMAT_ERROR = "ConfigFormatError"
    CONFIG_NOT_FOUND = "ConfigNotFound"
    RULE_PROVIDER_DOWNLOAD_ERROR = "RuleProviderDownloadError"
    NETWORK_ERROR = "NetworkError"
    DEFAULT = "Default"

    def __str__(self) -> str:
        return self.value


class CoreError(Exception):
    """Base exception for control plane errors."""

    kind: ErrorKind = ErrorKind.DEFAULT

    def __init__(self, message: str = "", kind: ErrorKind | None = None) -> None:
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"Error Kind: {self.kind}, Error Message: {self.message}"

    def to_dict(self) -> dict[str, str]:
        """Return the ``{kind, message}`` record exposed to the UI layer."""
        return {"kind": self.kind.value, "message": self.message}


class CoreNotFoundError(CoreError):
    """Raised when the core executable cannot be launched."""

    kind = ErrorKind.CORE_NOT_FOUND


class ConfigFormatError(CoreError):
    """Raised when a configuration document is malformed."""

    kind = ErrorKind.CONFIG_FORMAT_ERROR


class ConfigNotFoundError(CoreError):
    """Raised when the base configuration file is missing."""

    kind = ErrorKind.CONFIG_NOT_FOUND


class RuleProviderDownloadError(CoreError):
    """Raised when a rule provider cannot be downloaded or written."""

    kind = ErrorKind.RULE_PROVIDER_DOWNLOAD_ERROR


class NetworkError(CoreError):
    """Raised when system network settings cannot be applied or restored."""

    kind = ErrorKind.NETWORK_ERROR


class LockError(CoreError):
    """Raised when a shared state cell cannot be acquired."""
