"""Docker Compose lifecycle for a local deployment directory."""

import logging
import os
import shlex
import shutil
import tarfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from .compose import COMPOSE_FILENAME
from .config_loader import BootstrapSettings
from .errors import CommandError
from .local_runner import LocalRunner, get_local_runner
from .secret_generator import DEFAULT_SECRET_SPECS

logger = logging.getLogger(__name__)

BACKUP_DIRNAME = "backups"
BACKUP_PREFIX = "n8n_backup_"
STATS_FORMAT = r"table {{.Container}}\t{{.CPUPerc}}\t{{.MemUsage}}\t{{.NetIO}}\t{{.BlockIO}}"


@dataclass
class ContainerStatus:
    """Status of a Docker container."""
    name: str
    service: str
    image: str
    status: str
    ports: str
    running: bool


class DockerManager:
    """Runs docker compose commands in a deployment directory."""

    def __init__(self, project_dir: Path, runner: Optional[LocalRunner] = None):
        """Initialize Docker manager for ``project_dir``."""
        self.project_dir = Path(project_dir)
        self.runner = runner or get_local_runner()

    def _compose(self, args: str):
        return self.runner.run_command(f"docker compose {args}", cwd=self.project_dir)

    def _to_tuple(self, result) -> tuple[bool, str]:
        if result.success:
            return True, result.stdout
        return False, result.stderr or result.stdout

    def is_docker_running(self) -> bool:
        """Check if the Docker daemon answers."""
        return self.runner.run_command("docker version").success

    def is_compose_available(self) -> bool:
        """Check if Docker Compose v2 is available."""
        return self.runner.run_command("docker compose version").success

    def check_prerequisites(self) -> None:
        """Raise ``CommandError`` unless docker and compose are usable."""
        if not self.is_docker_running():
            raise CommandError("Docker is not running. Please start Docker and try again.", "docker version")
        if not self.is_compose_available():
            raise CommandError("Docker Compose is not available.", "docker compose version")

    def check_project_setup(self, settings: BootstrapSettings) -> list[Path]:
        """List files compose needs that are missing from the project directory."""
        required = [
            self.project_dir / COMPOSE_FILENAME,
            settings.env_path(self.project_dir),
        ]
        secrets_dir = settings.secrets_path(self.project_dir)
        required.extend(spec.destination_path(secrets_dir) for spec in DEFAULT_SECRET_SPECS)
        return [path for path in required if not path.is_file()]

    def compose_up(self, detach: bool = True, force_recreate: bool = False) -> tuple[bool, str]:
        """Run docker compose up."""
        args = "up"
        if detach:
            args += " -d"
        if force_recreate:
            args += " --force-recreate"
        return self._to_tuple(self._compose(args))

    def compose_down(self, remove_volumes: bool = False) -> tuple[bool, str]:
        """Run docker compose down."""
        args = "down"
        if remove_volumes:
            args += " -v"
        return self._to_tuple(self._compose(args))

    def compose_start(self) -> tuple[bool, str]:
        """Start existing containers."""
        return self._to_tuple(self._compose("start"))

    def compose_stop(self) -> tuple[bool, str]:
        """Stop running containers."""
        return self._to_tuple(self._compose("stop"))

    def compose_restart(self, service: Optional[str] = None) -> tuple[bool, str]:
        """Restart all services or one service."""
        args = "restart"
        if service:
            args += f" {shlex.quote(service)}"
        return self._to_tuple(self._compose(args))

    def compose_pull(self) -> tuple[bool, str]:
        """Pull latest images."""
        return self._to_tuple(self._compose("pull"))

    def compose_logs(
        self,
        tail: int = 100,
        service: Optional[str] = None,
        follow: bool = False
    ) -> str:
        """Get logs from the stack.

        With ``follow`` the output streams to the terminal until interrupted
        and an empty string is returned.
        """
        args = f"logs --no-color --tail={int(tail)}"
        if follow:
            args += " -f"
        if service:
            args += f" {shlex.quote(service)}"
        if follow:
            self.runner.run_command(f"docker compose {args}", cwd=self.project_dir, hide=False)
            return ""
        result = self._compose(args)
        return result.stdout if result.success else result.stderr

    def compose_ps(self) -> list[ContainerStatus]:
        """Get container status for the stack."""
        fmt = "{{.Name}}|{{.Service}}|{{.Image}}|{{.Status}}|{{.Ports}}"
        result = self._compose(f"ps -a --format {shlex.quote(fmt)}")

        containers = []
        if result.success and result.stdout:
            for line in result.stdout.split('\n'):
                if '|' in line:
                    parts = line.split('|')
                    if len(parts) >= 5:
                        running = "Up" in parts[3] or "running" in parts[3].lower()
                        containers.append(ContainerStatus(
                            name=parts[0],
                            service=parts[1],
                            image=parts[2],
                            status=parts[3],
                            ports=parts[4],
                            running=running
                        ))
        return containers

    def update(self) -> tuple[bool, str]:
        """Pull new images, recreate containers and prune old images."""
        success, output = self.compose_pull()
        if not success:
            return False, f"Pull failed: {output}"
        success, output = self.compose_up(force_recreate=True)
        if not success:
            return False, f"Recreate failed: {output}"
        self.prune_images()
        return True, "Update completed"

    def ensure_network(self, name: str) -> tuple[bool, str]:
        """Create an external docker network unless it exists."""
        quoted = shlex.quote(name)
        if self.runner.run_command(f"docker network inspect {quoted}").success:
            return True, f"Network {name} exists"
        result = self.runner.run_command(f"docker network create {quoted}")
        if result.success:
            logger.info("Created docker network %s", name)
            return True, f"Network {name} created"
        return False, result.stderr

    def prune_images(self) -> tuple[bool, str]:
        """Remove dangling Docker images."""
        return self._to_tuple(self.runner.run_command("docker image prune -f"))

    def stats(self) -> str:
        """One-shot resource usage of the running containers."""
        names = [c.name for c in self.compose_ps() if c.running]
        if not names:
            return ""
        quoted = " ".join(shlex.quote(name) for name in names)
        result = self.runner.run_command(
            f"docker stats --no-stream --format {shlex.quote(STATS_FORMAT)} {quoted}"
        )
        return result.stdout if result.success else result.stderr

    def backup_members(self, settings: BootstrapSettings) -> list[Path]:
        """Deployment files that exist and belong in a backup."""
        candidates = [
            self.project_dir / COMPOSE_FILENAME,
            settings.env_path(self.project_dir),
            settings.secrets_path(self.project_dir),
            settings.certs_path(self.project_dir),
        ]
        members = []
        for path in candidates:
            if not path.exists():
                continue
            if not path.resolve().is_relative_to(self.project_dir.resolve()):
                logger.warning("Skipping %s: outside %s", path, self.project_dir)
                continue
            members.append(path)
        return members

    def backup(self, settings: BootstrapSettings, backup_dir: Optional[Path] = None) -> tuple[bool, str]:
        """Archive the compose file, env file, secrets and certificates.

        The stack is stopped while the archive is written and started again
        afterwards. On success the message is the archive path.
        """
        members = self.backup_members(settings)
        if not members:
            return False, "Nothing to back up"

        backup_dir = Path(backup_dir) if backup_dir else self.project_dir / BACKUP_DIRNAME
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        archive = backup_dir / f"{BACKUP_PREFIX}{stamp}.tar.gz"

        stopped, output = self.compose_stop()
        if not stopped:
            logger.warning("Could not stop the stack before backup: %s", output)
        try:
            write_archive(archive, members, self.project_dir)
        except OSError as e:
            logger.error("Backup failed: %s", e)
            return False, f"Backup failed: {e.strerror or e}"
        finally:
            if stopped:
                self.compose_start()

        logger.info("Backup written to %s", archive)
        return True, str(archive)

    def restore(self, archive: Path) -> tuple[bool, str]:
        """Replace the deployment files with the contents of a backup archive."""
        archive = Path(archive)
        if not archive.is_file():
            return False, f"Backup file not found: {archive}"

        try:
            with tarfile.open(archive, "r:gz") as tar:
                members = tar.getmembers()
                unsafe = [m.name for m in members if not is_safe_member(m)]
                if unsafe:
                    return False, f"Refusing unsafe archive entries: {', '.join(unsafe)}"
                success, output = self.compose_down()
                if not success:
                    return False, f"Stopping the stack failed: {output}"
                tar.extractall(self.project_dir, members=members)
        except (tarfile.TarError, OSError) as e:
            logger.error("Restore of %s failed: %s", archive, e)
            return False, f"Restore failed: {e}"

        logger.info("Restored %s into %s", archive, self.project_dir)
        success, output = self.compose_up()
        if not success:
            return False, f"Starting the stack failed: {output}"
        return True, f"Restored {archive.name}"

    def reset(self, settings: BootstrapSettings) -> tuple[bool, str]:
        """Remove containers, volumes, secrets and certificates."""
        success, output = self.compose_down(remove_volumes=True)
        if not success:
            return False, f"Stopping the stack failed: {output}"

        for path in (settings.secrets_path(self.project_dir), settings.certs_path(self.project_dir)):
            if not path.is_dir():
                continue
            try:
                shutil.rmtree(path)
            except OSError as e:
                return False, f"Could not remove {path}: {e.strerror or e}"
            logger.info("Removed %s", path)

        self.runner.run_command("docker volume prune -f")
        self.runner.run_command("docker network prune -f")
        return True, "Reset completed"

    def clean(self) -> tuple[bool, str]:
        """Prune unused containers, images, volumes and networks."""
        failures = []
        for kind in ("container", "image", "volume", "network"):
            result = self.runner.run_command(f"docker {kind} prune -f")
            if not result.success:
                failures.append(f"{kind}: {result.stderr}")
        if failures:
            return False, "; ".join(failures)
        return True, "Cleanup completed"


def write_archive(archive: Path, members: list[Path], root: Path) -> Path:
    """Write a gzipped tar of ``members`` (paths under ``root``), created 0600."""
    archive.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(archive, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
    try:
        with os.fdopen(fd, "wb") as f, tarfile.open(fileobj=f, mode="w:gz") as tar:
            for path in members:
                tar.add(str(path), arcname=str(path.resolve().relative_to(root.resolve())))
    except BaseException:
        archive.unlink(missing_ok=True)
        raise
    return archive


def is_safe_member(member: tarfile.TarInfo) -> bool:
    """Only plain files and directories with relative paths inside the project."""
    if not (member.isfile() or member.isdir()):
        return False
    path = Path(member.name)
    return not path.is_absolute() and ".." not in path.parts
