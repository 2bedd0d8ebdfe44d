"""Error taxonomy shared by every component.

Each error carries the structured context a caller needs to branch on the
cause or to render a precise message (package name, required and found
versions, offending archive).
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Sequence


class ElpmError(Exception):
    """Base class for all package manager errors."""


class ConfigError(ElpmError):
    """Invalid or unreadable configuration."""


class InvalidVersionError(ElpmError, ValueError):
    """A version string does not follow the version syntax."""

    def __init__(self, text: str, reason: str):
        self.text = text
        self.reason = reason
        super().__init__(f"Invalid version syntax: '{text}' ({reason})")


class DescriptorError(ElpmError, ValueError):
    """A package descriptor or description file is malformed."""


class FetchError(ElpmError):
    """Network or IO failure while fetching from an archive."""

    def __init__(
        self,
        message: str,
        *,
        archive: Optional[str] = None,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.archive = archive
        self.url = url
        self.status = status
        prefix = f"[{archive}] " if archive else ""
        super().__init__(f"{prefix}{message}")


class TransactionInProgressError(ElpmError):
    """A download cycle for the same archive is already running."""

    def __init__(self, archive: str):
        self.archive = archive
        super().__init__(f"Downloads already in progress for archive '{archive}'")


class SignatureCause(Enum):
    """Why a signature check failed."""

    MISSING = "missing"
    UNKNOWN_KEY = "unknown-key"
    BAD_SIGNATURE = "bad-signature"
    MALFORMED = "malformed"


class SignatureError(ElpmError):
    """Signature verification failed for an index or artifact."""

    def __init__(self, cause: SignatureCause, target: str, detail: str = ""):
        self.cause = cause
        self.target = target
        self.detail = detail
        message = f"Failed to verify signature of {target}: {cause.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UnsatisfiableReason(Enum):
    """Why a requirement could not be met during resolution."""

    DISABLED = "disabled"
    HELD = "held"
    TOO_OLD = "too-old"
    ABSENT = "absent"


class UnsatisfiableError(ElpmError):
    """A requirement cannot be satisfied; the transaction is aborted."""

    def __init__(
        self,
        name: str,
        required_version,
        reason: UnsatisfiableReason,
        best_available=None,
        held_version: Optional[str] = None,
    ):
        self.name = name
        self.required_version = required_version
        self.reason = reason
        self.best_available = best_available
        self.held_version = held_version
        super().__init__(self._render())

    def _render(self) -> str:
        if self.reason is UnsatisfiableReason.HELD:
            return (
                f"Package '{self.name}' held at version {self.held_version}, "
                f"but version {self.required_version} required"
            )
        if self.reason is UnsatisfiableReason.DISABLED:
            return f"Required package '{self.name}' is disabled"
        if self.reason is UnsatisfiableReason.TOO_OLD:
            return (
                f"Need package '{self.name}-{self.required_version}', "
                f"but only {self.best_available} is available"
            )
        return f"Package '{self.name}-{self.required_version}' is unavailable"


class InstallError(ElpmError):
    """Unpacking or writing a package failed."""

    def __init__(self, name: str, message: str, path: Optional[Path] = None):
        self.name = name
        self.path = path
        super().__init__(f"Cannot install '{name}': {message}")


class PackageInUseError(ElpmError):
    """Deleting a package would break installed dependents."""

    def __init__(self, name: str, dependents: Sequence[str]):
        self.name = name
        self.dependents = list(dependents)
        super().__init__(
            f"Package '{name}' is used by {', '.join(self.dependents)} as dependency, not deleting"
        )


class ActivationError(ElpmError):
    """A package could not be activated."""

    def __init__(
        self,
        name: str,
        message: str,
        *,
        missing_dependency: Optional[str] = None,
        required_version=None,
    ):
        self.name = name
        self.missing_dependency = missing_dependency
        self.required_version = required_version
        super().__init__(f"Unable to activate package '{name}': {message}")
