"""Credential file storage with owner-only permissions."""

import logging
import os
import stat
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .errors import ArtifactAlreadyExists, BootstrapLocked, InvalidSecret, PathUnwritable
from .secret_generator import GeneratedSecret, SecretSpec

logger = logging.getLogger(__name__)

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700
LOCK_FILENAME = ".bootstrap.lock"


def atomic_write_text(path: Path, content: str, mode: int = PRIVATE_FILE_MODE) -> Path:
    """Write ``content`` to ``path`` without ever exposing a partial file.

    The data goes to a temp file in the same directory (created 0600 by
    ``mkstemp``), is flushed to disk, gets its final mode, and is then
    renamed over the destination.
    """
    path = Path(path)
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise PathUnwritable(path, e.strerror or str(e))

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except OSError as e:
        _remove_quietly(Path(tmp_name))
        raise PathUnwritable(path, e.strerror or str(e))
    except BaseException:
        _remove_quietly(Path(tmp_name))
        raise

    return path


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


@dataclass
class CredentialArtifact:
    """A secret as it lands on disk."""
    path: Path
    content: str
    permissions: int = PRIVATE_FILE_MODE

    @classmethod
    def from_secret(cls, secret: GeneratedSecret, secrets_dir: Path) -> "CredentialArtifact":
        """Build the artifact for a generated secret."""
        return cls(path=secret.spec.destination_path(secrets_dir), content=secret.value)

    def __repr__(self) -> str:
        return f"CredentialArtifact(path={str(self.path)!r}, permissions={oct(self.permissions)})"


class CredentialStore:
    """Persists secrets as individual files inside one directory."""

    def __init__(self, secrets_dir: Path, overwrite_existing: bool = False):
        """Initialize with the secrets directory (created lazily)."""
        self.secrets_dir = Path(secrets_dir)
        self.overwrite_existing = overwrite_existing

    @property
    def lock_path(self) -> Path:
        return self.secrets_dir / LOCK_FILENAME

    def ensure_dir(self) -> None:
        """Ensure the secrets directory exists.

        A directory created here gets 0700. An existing directory keeps the
        mode the operator gave it.
        """
        if self.secrets_dir.is_dir():
            return
        try:
            self.secrets_dir.mkdir(parents=True, exist_ok=True)
            self.secrets_dir.chmod(PRIVATE_DIR_MODE)
        except OSError as e:
            raise PathUnwritable(self.secrets_dir, e.strerror or str(e))

    def path_for(self, spec: SecretSpec) -> Path:
        """Get the file path backing ``spec``."""
        return spec.destination_path(self.secrets_dir)

    def exists(self, spec: SecretSpec) -> bool:
        """Check if a secret file already exists."""
        return self.path_for(spec).is_file()

    def write_secret(self, artifact: CredentialArtifact, overwrite: Optional[bool] = None) -> Path:
        """Persist one credential artifact.

        Raises ``ArtifactAlreadyExists`` when the file exists and overwriting
        is off, and ``PathUnwritable`` on any filesystem error.
        """
        if overwrite is None:
            overwrite = self.overwrite_existing

        if artifact.path.exists() and not overwrite:
            raise ArtifactAlreadyExists(artifact.path)

        self.ensure_dir()
        atomic_write_text(artifact.path, artifact.content, artifact.permissions)
        logger.info("Wrote %s", artifact.path)
        return artifact.path

    def store(self, secret: GeneratedSecret, overwrite: Optional[bool] = None) -> Path:
        """Persist a generated secret to its destination path."""
        artifact = CredentialArtifact.from_secret(secret, self.secrets_dir)
        return self.write_secret(artifact, overwrite=overwrite)

    def read_secret(self, spec: SecretSpec) -> GeneratedSecret:
        """Load an existing secret from disk.

        Raises ``InvalidSecret`` when the file cannot be read, is not UTF-8,
        or does not hold a value of the shape ``spec`` produces.
        """
        path = self.path_for(spec)
        try:
            value = path.read_text(encoding="utf-8").strip()
        except UnicodeDecodeError:
            raise InvalidSecret(path, "not valid UTF-8")
        except OSError as e:
            raise InvalidSecret(path, e.strerror or str(e))

        problem = spec.check_value(value)
        if problem:
            raise InvalidSecret(path, problem)
        return GeneratedSecret(spec=spec, value=value)

    def restrict(self, spec: SecretSpec) -> bool:
        """Tighten an existing secret file to owner-only access.

        Returns True if the mode had to change.
        """
        path = self.path_for(spec)
        try:
            current = stat.S_IMODE(path.stat().st_mode)
            if current == PRIVATE_FILE_MODE:
                return False
            path.chmod(PRIVATE_FILE_MODE)
        except OSError as e:
            raise PathUnwritable(path, e.strerror or str(e))
        logger.warning("Restricted %s from %s to %s", path, oct(current), oct(PRIVATE_FILE_MODE))
        return True

    def delete_secret(self, spec: SecretSpec) -> bool:
        """Delete a secret file. Returns True if something was removed."""
        path = self.path_for(spec)
        if path.exists():
            path.unlink()
            logger.info("Deleted %s", path)
            return True
        return False

    def list_secrets(self) -> list[str]:
        """List secret file names present in the directory."""
        if not self.secrets_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.secrets_dir.glob("*.txt")
            if p.is_file()
        )

    @contextmanager
    def lock(self) -> Iterator[Path]:
        """Hold an exclusive lock file on the secrets directory."""
        self.ensure_dir()
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, PRIVATE_FILE_MODE)
        except FileExistsError:
            raise BootstrapLocked(self.lock_path)
        except OSError as e:
            raise PathUnwritable(self.lock_path, e.strerror or str(e))

        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{os.getpid()}\n")
            yield self.lock_path
        finally:
            _remove_quietly(self.lock_path)
