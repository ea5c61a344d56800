"""Exception types raised by the memory-vault core.

The service layer (``memory_vault.service``) converts each of these into a
structured response; nothing below it swallows them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memory_vault.security import SecretScanResult


class MemoryVaultError(Exception):
    """Base class for all memory-vault errors."""


class ValidationError(MemoryVaultError, ValueError):
    """Raised when input validation fails (missing field, unknown kind, bad range)."""


class SecretDetectedError(MemoryVaultError):
    """Raised when the secret gate blocks a write. Nothing was persisted."""

    def __init__(self, result: SecretScanResult):
        self.result = result
        names = ", ".join(result.signature_names)
        super().__init__(f"Potential secrets detected ({names}); nothing was saved")


class BackendUnavailableError(MemoryVaultError):
    """Raised when the database cannot be written even after a reconnect."""


class StoreCorruptedError(MemoryVaultError):
    """Raised when the database file cannot be parsed. The file is left untouched."""


class SchemaVersionError(MemoryVaultError):
    """Raised when database schema is incompatible."""
