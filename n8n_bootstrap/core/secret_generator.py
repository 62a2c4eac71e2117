"""Secret material generation.

Every value comes from the operating system CSPRNG through the ``secrets``
module. There is no fallback generator: if the OS cannot supply
secure randomness the whole run stops with ``GenerationUnavailable``.
"""

import logging
import os
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import GenerationUnavailable

logger = logging.getLogger(__name__)

# Letters, digits and two symbols that need no quoting in .env files or URLs
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "-_"
HEX_ALPHABET = "0123456789abcdef"


class SecretKind(str, Enum):
    """Character domain of a generated secret."""
    PASSWORD = "password"
    HEX_KEY = "hex_key"


@dataclass(frozen=True)
class SecretSpec:
    """Describes one credential to produce.

    ``length`` is a character count for passwords and a byte count for hex
    keys (the rendered key is twice as long).
    """
    name: str
    kind: SecretKind
    length: int
    filename: str
    env_key: str = ""
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Secret name must not be empty")
        if self.length <= 0:
            raise ValueError(f"Secret length must be positive: {self.name}")
        if not self.filename or Path(self.filename).name != self.filename:
            raise ValueError(f"Secret filename must be a bare file name: {self.filename!r}")

    @property
    def rendered_length(self) -> int:
        """Number of characters in the generated value."""
        if self.kind == SecretKind.HEX_KEY:
            return self.length * 2
        return self.length

    @property
    def alphabet(self) -> str:
        """Characters a value of this spec may contain."""
        if self.kind == SecretKind.HEX_KEY:
            return HEX_ALPHABET
        return PASSWORD_ALPHABET

    def check_value(self, value: str) -> Optional[str]:
        """Return why ``value`` cannot be a secret of this spec, or None if it can."""
        if not value:
            return "empty"
        if len(value) != self.rendered_length:
            return f"expected {self.rendered_length} characters, found {len(value)}"
        if not set(value) <= set(self.alphabet):
            return "contains characters outside the expected alphabet"
        return None

    def destination_path(self, secrets_dir: Path) -> Path:
        """Resolve where this secret is stored inside ``secrets_dir``."""
        return Path(secrets_dir) / self.filename


@dataclass
class GeneratedSecret:
    """A generated (or reloaded) secret value."""
    spec: SecretSpec
    value: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        # Never expose the value in tracebacks or logs
        return f"GeneratedSecret(spec={self.spec.name!r}, value='***')"


ADMIN_PASSWORD = "n8n_admin_password"

DEFAULT_SECRET_SPECS: tuple[SecretSpec, ...] = (
    SecretSpec(
        name="postgres_password",
        kind=SecretKind.PASSWORD,
        length=24,
        filename="postgres_password.txt",
        env_key="POSTGRES_PASSWORD_FILE",
        description="PostgreSQL database password",
    ),
    SecretSpec(
        name="redis_password",
        kind=SecretKind.PASSWORD,
        length=24,
        filename="redis_password.txt",
        env_key="REDIS_PASSWORD_FILE",
        description="Redis queue broker password",
    ),
    SecretSpec(
        name="n8n_encryption_key",
        kind=SecretKind.HEX_KEY,
        length=32,
        filename="n8n_encryption_key.txt",
        env_key="N8N_ENCRYPTION_KEY_FILE",
        description="n8n data encryption key",
    ),
    SecretSpec(
        name=ADMIN_PASSWORD,
        kind=SecretKind.PASSWORD,
        length=16,
        filename="n8n_admin_password.txt",
        env_key="N8N_BASIC_AUTH_PASSWORD_FILE",
        description="n8n admin user password",
    ),
    SecretSpec(
        name="jwt_secret",
        kind=SecretKind.HEX_KEY,
        length=32,
        filename="jwt_secret.txt",
        env_key="N8N_USER_MANAGEMENT_JWT_SECRET_FILE",
        description="JWT signing secret",
    ),
    SecretSpec(
        name="webhook_password",
        kind=SecretKind.PASSWORD,
        length=20,
        filename="webhook_password.txt",
        env_key="N8N_WEBHOOK_TUNNEL_AUTH_TOKEN_FILE",
        description="Webhook authentication token",
    ),
)


def ensure_secure_source() -> None:
    """Raise ``GenerationUnavailable`` unless the OS CSPRNG answers."""
    try:
        sample = os.urandom(16)
    except NotImplementedError as e:
        raise GenerationUnavailable(str(e) or "os.urandom is not implemented")
    except OSError as e:
        raise GenerationUnavailable(str(e))
    if len(sample) != 16:
        raise GenerationUnavailable("short read from os.urandom")


def generate_password(length: int) -> str:
    """Generate a password of exactly ``length`` characters.

    Each character is an independent uniform draw from ``PASSWORD_ALPHABET``
    (64 symbols, 6 bits of entropy per character).
    """
    if length <= 0:
        raise ValueError("Password length must be positive")
    ensure_secure_source()
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_hex_key(byte_length: int) -> str:
    """Generate ``byte_length`` random bytes as lowercase hex."""
    if byte_length <= 0:
        raise ValueError("Key length must be positive")
    ensure_secure_source()
    return secrets.token_hex(byte_length)


class SecretGenerator:
    """Produces values for ``SecretSpec`` entries."""

    def __init__(self, specs: Optional[tuple[SecretSpec, ...]] = None):
        self.specs = tuple(specs) if specs is not None else DEFAULT_SECRET_SPECS
        self._check_unique_names()

    def _check_unique_names(self) -> None:
        seen = set()
        for spec in self.specs:
            if spec.name in seen:
                raise ValueError(f"Duplicate secret name: {spec.name}")
            seen.add(spec.name)

    def generate(self, spec: SecretSpec) -> GeneratedSecret:
        """Generate one secret for ``spec``."""
        if spec.kind == SecretKind.HEX_KEY:
            value = generate_hex_key(spec.length)
        else:
            value = generate_password(spec.length)
        logger.debug("Generated %s (%s, %d chars)", spec.name, spec.kind.value, len(value))
        return GeneratedSecret(spec=spec, value=value)

    def generate_all(self) -> list[GeneratedSecret]:
        """Generate every configured secret.

        The secure source is checked first so nothing is produced, and
        nothing written, when it is missing.
        """
        ensure_secure_source()
        return [self.generate(spec) for spec in self.specs]
