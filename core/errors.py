"""Error taxonomy for index rebuilds and queries.

Per-entry problems (``InvalidName``, ``DuplicateKey``, ``MissingStorageObject``)
are collected into the rebuild report and never abort a walk. Structural
problems (``DuplicateId``, ``HierarchyCycle``, ``StorageIoError``) abort the
rebuild and leave the previously published hierarchy in place. The remaining
kinds are query-time client errors.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_NAME = "InvalidName"
    DUPLICATE_ID = "DuplicateId"
    DUPLICATE_KEY = "DuplicateKey"
    MISSING_STORAGE_OBJECT = "MissingStorageObject"
    STORAGE_IO = "StorageIoError"
    HIERARCHY_CYCLE = "HierarchyCycle"
    NOT_A_FOLDER = "NotAFolder"
    NOT_A_FILE = "NotAFile"
    ENTITY_NOT_FOUND = "EntityNotFound"
    ACCESS_DENIED = "AccessDenied"


_CLIENT_KINDS = {
    ErrorKind.NOT_A_FOLDER,
    ErrorKind.NOT_A_FILE,
    ErrorKind.ENTITY_NOT_FOUND,
    ErrorKind.ACCESS_DENIED,
}


class LibraryError(Exception):
    """Base class carrying an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.STORAGE_IO

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class InvalidNameError(LibraryError):
    kind = ErrorKind.INVALID_NAME


class DuplicateIdError(LibraryError):
    """Two live storage objects claim the same entity id."""

    kind = ErrorKind.DUPLICATE_ID

    def __init__(self, entity_id: int, paths: list[str]) -> None:
        super().__init__(f"id {entity_id} is claimed by {len(paths)} objects: {', '.join(paths)}")
        self.entity_id = entity_id
        self.paths = paths


class DuplicateKeyError(LibraryError):
    """A (name, desc, type, parent) key is already taken by another row."""

    kind = ErrorKind.DUPLICATE_KEY


class StorageIoError(LibraryError):
    kind = ErrorKind.STORAGE_IO


class HierarchyCycleError(LibraryError):
    kind = ErrorKind.HIERARCHY_CYCLE

    def __init__(self, entity_id: int, depth: int) -> None:
        super().__init__(f"parent chain of {entity_id} exceeded {depth} steps; the parent graph has a cycle")
        self.entity_id = entity_id


class NotAFolderError(LibraryError):
    kind = ErrorKind.NOT_A_FOLDER


class NotAFileError(LibraryError):
    kind = ErrorKind.NOT_A_FILE


class EntityNotFoundError(LibraryError):
    kind = ErrorKind.ENTITY_NOT_FOUND


class AccessDeniedError(LibraryError):
    kind = ErrorKind.ACCESS_DENIED


def is_client_error(err: BaseException) -> bool:
    """Return True for errors a request handler should map to a 4xx response."""
    return isinstance(err, LibraryError) and err.kind in _CLIENT_KINDS


__all__ = [
    "ErrorKind",
    "LibraryError",
    "InvalidNameError",
    "DuplicateIdError",
    "DuplicateKeyError",
    "StorageIoError",
    "HierarchyCycleError",
    "NotAFolderError",
    "NotAFileError",
    "EntityNotFoundError",
    "AccessDeniedError",
    "is_client_error",
]
