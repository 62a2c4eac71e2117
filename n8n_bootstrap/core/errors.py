"""Exceptions raised by the bootstrap core."""

from pathlib import Path
from typing import Optional


class BootstrapError(Exception):
    """Base class for all bootstrap errors."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.message = message
        self.path = Path(path) if path is not None else None
        super().__init__(self.message)


class GenerationUnavailable(BootstrapError):
    """No cryptographically secure random source is available."""

    def __init__(self, reason: str = ""):
        message = "No secure random source available"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PathUnwritable(BootstrapError):
    """A destination file or directory could not be written."""

    def __init__(self, path: Path, reason: str = ""):
        self.reason = reason
        super().__init__(f"Cannot write {path}: {reason}", path)


class ArtifactAlreadyExists(BootstrapError):
    """The destination already exists and overwriting is disabled."""

    def __init__(self, path: Path):
        super().__init__(f"Artifact already exists: {path}", path)


class BootstrapLocked(BootstrapError):
    """Another run holds the lock on the secrets directory."""

    def __init__(self, path: Path):
        super().__init__(f"Another bootstrap run holds the lock: {path}", path)


class CertificateError(BootstrapError):
    """Certificate generation failed."""


class CommandError(BootstrapError):
    """A local docker command failed or docker is unavailable."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


class InvalidSecret(BootstrapError):
    """An existing secret file cannot be read or holds an unusable value."""

    def __init__(self, path: Path, reason: str = ""):
        self.reason = reason
        super().__init__(f"Invalid secret {path}: {reason}", path)
