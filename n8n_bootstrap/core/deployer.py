"""End-to-end deployment: bootstrap artifacts, then docker compose up."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .cert_generator import CertificateManager
from .compose import COMPOSE_FILENAME, write_compose
from .config_loader import BootstrapSettings
from .docker_manager import DockerManager
from .errors import BootstrapError
from .pipeline import RunReport, RunStatus, run_bootstrap

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Result of a deployment."""
    success: bool
    message: str = ""
    report: Optional[RunReport] = None
    steps: list[str] = field(default_factory=list)


def deploy(
    base_dir: Path,
    settings: BootstrapSettings,
    docker: Optional[DockerManager] = None,
    start: bool = True,
    progress_callback: Callable[[str], None] = None,
) -> DeployResult:
    """
    Prepare a deployment directory and start the stack.

    Args:
        base_dir: Deployment directory holding compose file, .env and secrets
        settings: Operator settings for this run
        docker: Docker manager (defaults to one bound to ``base_dir``)
        start: Run ``docker compose up -d`` after preparing artifacts
        progress_callback: Optional callback for progress updates

    Returns:
        DeployResult with the per-secret report and completed steps
    """
    base_dir = Path(base_dir)
    docker = docker or DockerManager(base_dir)
    result = DeployResult(success=False)

    def log(msg: str):
        logger.info(msg)
        result.steps.append(msg)
        if progress_callback:
            progress_callback(msg)

    try:
        if start:
            docker.check_prerequisites()
            log("Docker and Docker Compose are available")

        report = run_bootstrap(base_dir, settings)
        result.report = report
        if report.status != RunStatus.SUCCESS:
            result.message = f"Secret generation {report.status.value}: {report.error}"
            return result
        log(f"Secrets ready in {settings.secrets_path(base_dir)}")

        if settings.certificates.enabled:
            certs = CertificateManager(
                settings.certs_path(base_dir),
                overwrite_existing=settings.overwrite_existing,
            )
            certs.get_or_create(settings.domain, settings.certificates.validity_days)
            log(f"Certificates ready in {certs.certs_dir}")

        if not (base_dir / COMPOSE_FILENAME).exists():
            write_compose(base_dir, settings)
            log(f"Wrote {COMPOSE_FILENAME}")

        if not start:
            result.success = True
            result.message = "Artifacts prepared"
            return result

        missing = docker.check_project_setup(settings)
        if missing:
            result.message = "Missing files: " + ", ".join(str(p) for p in missing)
            return result

        success, output = docker.ensure_network(settings.web_network)
        if not success:
            result.message = f"Network setup failed: {output}"
            return result
        log(output)

        success, output = docker.compose_up()
        if not success:
            result.message = f"Failed to start stack: {output}"
            return result
        log("Stack started")

    except BootstrapError as e:
        logger.error("%s", e)
        result.message = str(e)
        return result

    result.success = True
    result.message = f"Deployed: {settings.protocol}://{settings.domain}"
    return result
