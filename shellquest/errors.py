"""Error taxonomy shared by the filesystem, search layer and command handlers.

Filesystem helpers raise ``FilesystemError`` subclasses; public
``FileSystem`` operations turn them into a failed ``OpResult`` so callers
never see an exception cross the command boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Categories of failure a caller must be able to tell apart."""

    SYNTAX = "syntax"
    NOT_FOUND = "not_found"
    NOT_A_DIRECTORY = "not_a_directory"
    IS_A_DIRECTORY = "is_a_directory"
    PERMISSION_DENIED = "permission_denied"
    NOT_PERMITTED = "not_permitted"
    BLOCKED = "blocked"
    INVALID_MODE = "invalid_mode"
    INVALID_REGEX = "invalid_regex"
    INVALID_PATH = "invalid_path"
    INVALID_SNAPSHOT = "invalid_snapshot"
    CONFLICT = "conflict"
    INVALID_ARGUMENT = "invalid_argument"


class FilesystemError(Exception):
    """Base class for recoverable filesystem failures."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class NotFoundError(FilesystemError):
    kind = ErrorKind.NOT_FOUND


class NotDirectoryError(FilesystemError):
    kind = ErrorKind.NOT_A_DIRECTORY


class IsDirectoryError(FilesystemError):
    kind = ErrorKind.IS_A_DIRECTORY


class PermissionDeniedError(FilesystemError):
    kind = ErrorKind.PERMISSION_DENIED


class NotPermittedError(FilesystemError):
    kind = ErrorKind.NOT_PERMITTED


class InvalidPathError(FilesystemError):
    kind = ErrorKind.INVALID_PATH


class ConflictError(FilesystemError):
    kind = ErrorKind.CONFLICT


class InvalidModeError(FilesystemError):
    kind = ErrorKind.INVALID_MODE


class InvalidSnapshotError(FilesystemError):
    kind = ErrorKind.INVALID_SNAPSHOT


@dataclass
class OpResult:
    """Outcome of a filesystem operation.

    ``value`` carries the payload of read-style operations (file content,
    directory entries, resolved paths).
    """

    success: bool = True
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> "OpResult":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "OpResult":
        return cls(success=False, error=message, kind=kind)

    @classmethod
    def from_error(cls, exc: FilesystemError) -> "OpResult":
        return cls.fail(exc.kind, exc.message)
