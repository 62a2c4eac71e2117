"""Environment file and disclosure summary rendering."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .config_loader import BootstrapSettings
from .credential_store import PRIVATE_FILE_MODE, atomic_write_text
from .errors import BootstrapError
from .secret_generator import (
    ADMIN_PASSWORD,
    DEFAULT_SECRET_SPECS,
    GeneratedSecret,
    SecretKind,
    SecretSpec,
)

logger = logging.getLogger(__name__)

ENV_FILE_MODE = 0o644
SUMMARY_FILENAME = "SECRETS_INFO.md"

# Docker mounts each compose secret at /run/secrets/<name> inside containers
DEFAULT_SECRETS_MOUNT = "/run/secrets"

SECRET_GROUPS = {
    "postgres_password": "Database",
    "redis_password": "Redis",
}

GROUP_ORDER = (
    "n8n",
    "Database",
    "Redis",
    "Security",
    "Queue Mode",
    "Performance",
    "Timezone",
    "Network",
    "Logging",
)


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass
class EnvGroup:
    """A titled block of environment entries."""
    title: str
    entries: dict[str, str] = field(default_factory=dict)


@dataclass
class EnvironmentDocument:
    """Ordered configuration consumed by the compose services."""
    groups: list[EnvGroup] = field(default_factory=list)
    secret_keys: tuple[str, ...] = ()

    def group(self, title: str) -> EnvGroup:
        """Get a group by title, creating it at the end if missing."""
        for group in self.groups:
            if group.title == title:
                return group
        group = EnvGroup(title)
        self.groups.append(group)
        return group

    def items(self) -> Iterator[tuple[str, str]]:
        for group in self.groups:
            yield from group.entries.items()

    def as_dict(self) -> dict[str, str]:
        return dict(self.items())

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.as_dict().get(key, default)

    def render(self) -> str:
        """Render ``KEY=VALUE`` lines with one comment header per group."""
        blocks = []
        for group in self.groups:
            if not group.entries:
                continue
            lines = [f"# {group.title} Configuration"]
            lines.extend(f"{key}={value}" for key, value in group.entries.items())
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks) + "\n"


def render(
    inputs: Optional[BootstrapSettings],
    secret_paths: dict[str, Path],
    specs: Iterable[SecretSpec] = DEFAULT_SECRET_SPECS,
    extra: Optional[dict[str, str]] = None,
    secrets_mount: Optional[str] = DEFAULT_SECRETS_MOUNT,
) -> EnvironmentDocument:
    """Build the environment document.

    ``secret_paths`` maps secret names to the host files that back them;
    every one must exist. Secret keys reference files only: the container
    mount path (``/run/secrets/<name>``) or, with ``secrets_mount=None``,
    the host path itself. ``extra`` adds sorted entries in a final group.
    """
    settings = inputs or BootstrapSettings()
    specs = tuple(specs)

    for spec in specs:
        path = secret_paths.get(spec.name)
        if path is None:
            raise BootstrapError(f"No path given for secret {spec.name}")
        if not Path(path).is_file():
            raise BootstrapError(f"Secret file missing for {spec.name}", path)

    doc = EnvironmentDocument(groups=[EnvGroup(title) for title in GROUP_ORDER])
    domain = settings.domain
    base_url = f"{settings.protocol}://{domain}/"

    doc.group("n8n").entries.update({
        "N8N_DOMAIN": domain,
        "N8N_HOST": domain,
        "N8N_EMAIL": settings.email,
        "SSL_EMAIL": settings.email,
        "N8N_PROTOCOL": settings.protocol,
        "N8N_PORT": "443" if settings.protocol == "https" else "80",
        "WEBHOOK_URL": base_url,
        "N8N_EDITOR_BASE_URL": base_url,
        "N8N_USER": settings.admin_user,
    })
    doc.group("Database").entries.update({
        "POSTGRES_DB": settings.database.name,
        "POSTGRES_USER": settings.database.user,
    })

    secret_keys = []
    for spec in specs:
        if not spec.env_key:
            continue
        if secrets_mount is None:
            reference = str(Path(secret_paths[spec.name]))
        else:
            reference = f"{secrets_mount.rstrip('/')}/{spec.name}"
        group = SECRET_GROUPS.get(spec.name, "Security")
        doc.group(group).entries[spec.env_key] = reference
        secret_keys.append(spec.env_key)
    doc.secret_keys = tuple(secret_keys)

    doc.group("Security").entries["N8N_SECURE_COOKIE"] = _flag(settings.protocol == "https")

    queue = settings.queue
    doc.group("Queue Mode").entries.update({
        "EXECUTIONS_MODE": queue.executions_mode,
        "QUEUE_HEALTH_CHECK_ACTIVE": _flag(queue.health_check_active),
        "OFFLOAD_MANUAL_EXECUTIONS_TO_WORKERS": _flag(queue.offload_manual_executions),
        "N8N_RUNNERS_ENABLED": _flag(queue.runners_enabled),
    })

    perf = settings.performance
    doc.group("Performance").entries.update({
        "EXECUTIONS_DATA_PRUNE": _flag(perf.prune_data),
        "EXECUTIONS_DATA_PRUNE_MAX_COUNT": str(perf.prune_max_count),
        "EXECUTIONS_TIMEOUT": str(perf.execution_timeout),
        "N8N_GRACEFUL_SHUTDOWN_TIMEOUT": str(perf.graceful_shutdown_timeout),
    })

    doc.group("Timezone").entries.update({
        "GENERIC_TIMEZONE": settings.timezone,
        "TZ": settings.timezone,
    })
    doc.group("Network").entries["TRAEFIK_WEB_NETWORK"] = settings.web_network
    doc.group("Logging").entries.update({
        "N8N_LOG_LEVEL": settings.log_level,
        "N8N_LOG_OUTPUT": "console",
    })

    if extra:
        custom = doc.group("Custom")
        for key in sorted(extra):
            custom.entries[key] = str(extra[key])

    return doc


def materialize_env_file(doc: EnvironmentDocument, path: Path) -> Path:
    """Write the environment document to ``path``."""
    atomic_write_text(Path(path), doc.render(), ENV_FILE_MODE)
    logger.info("Wrote environment file %s", path)
    return Path(path)


def render_disclosure_summary(
    doc: EnvironmentDocument,
    secrets: Iterable[GeneratedSecret],
    secrets_dir: Path,
    generated_on: Optional[datetime] = None,
) -> str:
    """Render the operator summary.

    The admin password is the only secret value that appears in it.
    """
    secrets = list(secrets)
    generated_on = generated_on or datetime.now()
    domain = doc.get("N8N_DOMAIN", "")
    protocol = doc.get("N8N_PROTOCOL", "https")

    lines = [
        "# Secrets Information",
        "",
        "> **SENSITIVE**: this file contains a plaintext password.",
        "> Never commit it to version control. Delete it once the admin password is stored safely.",
        "",
        f"Generated on: {generated_on:%Y-%m-%d %H:%M:%S}",
        "",
        "## Generated Secrets",
    ]
    for secret in secrets:
        spec = secret.spec
        if spec.kind == SecretKind.HEX_KEY:
            kind = f"{spec.rendered_length} hex chars"
        else:
            kind = f"{spec.rendered_length} chars"
        path = spec.destination_path(secrets_dir)
        lines.append(f"- **{spec.filename}**: {spec.description or spec.name} ({kind}) at `{path}`")

    lines += [
        "",
        "## Configuration",
        f"- Domain: {domain}",
        f"- Email: {doc.get('N8N_EMAIL', '')}",
        f"- Timezone: {doc.get('TZ', '')}",
        "",
        "## Environment References",
    ]
    lines.extend(f"- {key}={doc.get(key)}" for key in doc.secret_keys)

    lines += [
        "",
        "## Security Notes",
        "- All secret files have 600 permissions (owner read/write only)",
        "- Never commit secrets to version control",
        "- Store backups securely if needed",
        "- Re-running the bootstrap keeps existing secrets unless overwrite is requested",
    ]

    admin = next((s for s in secrets if s.spec.name == ADMIN_PASSWORD), None)
    if admin is not None:
        lines += [
            "",
            "## Admin Access (SENSITIVE)",
            f"- Username: {doc.get('N8N_USER', 'admin')}",
            f"- Password: {admin.value}",
            f"- URL: {protocol}://{domain}",
        ]

    lines += [
        "",
        "## Backup Command",
        f"tar -czf n8n-secrets-backup-$(date +%Y%m%d).tar.gz {Path(secrets_dir).name}/",
        "",
    ]
    return "\n".join(lines)


def materialize_disclosure_summary(
    doc: EnvironmentDocument,
    secrets: Iterable[GeneratedSecret],
    path: Path,
) -> Path:
    """Write the disclosure summary with owner-only permissions."""
    path = Path(path)
    content = render_disclosure_summary(doc, secrets, path.parent)
    atomic_write_text(path, content, PRIVATE_FILE_MODE)
    logger.info("Wrote disclosure summary %s", path)
    return path


def materialize(
    doc: EnvironmentDocument,
    secrets: Iterable[GeneratedSecret],
    env_path: Path,
    summary_path: Path,
) -> tuple[Path, Path]:
    """Write both artifacts or neither.

    If the summary cannot be written the environment file is put back the
    way it was before the call (removed when it did not exist).
    """
    env_path = Path(env_path)
    previous = env_path.read_text(encoding="utf-8") if env_path.is_file() else None

    materialize_env_file(doc, env_path)
    try:
        materialize_disclosure_summary(doc, secrets, summary_path)
    except BaseException:
        logger.error("Summary failed, rolling back %s", env_path)
        if previous is None:
            env_path.unlink(missing_ok=True)
        else:
            atomic_write_text(env_path, previous, ENV_FILE_MODE)
        raise

    return env_path, Path(summary_path)
