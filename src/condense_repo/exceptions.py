from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class CondenseRepoError(Exception):
    """Base exception for errors in the condense_repo module."""


@dataclass(frozen=True)
class InvalidRepositoryError(CondenseRepoError):
    """Raised when a repository root does not exist or is not a directory."""

    folder: Path
    message: str = "The specified path is not an existing directory."


@dataclass(frozen=True)
class FileProcessingError(CondenseRepoError):
    """Raised when a single file cannot be processed."""

    file: Path
    reason: str = "The specified path is not a regular file."


@dataclass(frozen=True)
class BackendUnavailableError(CondenseRepoError):
    """Raised when an optional analysis backend cannot be initialized."""

    backend: str
    reason: str


@dataclass(frozen=True)
class ConfigurationError(CondenseRepoError):
    """Raised when a settings file cannot be read or validated."""

    source: Path
    reason: str
