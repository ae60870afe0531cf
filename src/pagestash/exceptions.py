"""Unified exception hierarchy for pagestash."""

from __future__ import annotations


class PageStashError(Exception):
    """Base exception for all pagestash errors."""


# Records
class ValidationError(PageStashError):
    """Rejected input; nothing was persisted."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class NotFoundError(PageStashError):
    """No record with the requested id."""


# Backend
class StorageError(PageStashError):
    """Base exception for backing-store failures."""


class QuotaExceededError(StorageError):
    """A write would exceed the backing store's capacity."""


class CorruptionError(StorageError):
    """Stored data is unreadable or structurally corrupt."""


class UnrecoverableCorruptionError(CorruptionError):
    """Corruption was detected and no usable snapshot could restore it."""


# Backups
class BackupError(PageStashError):
    """Failed to write a backup snapshot."""


class RecoveryError(PageStashError):
    """No usable snapshot to recover from."""
