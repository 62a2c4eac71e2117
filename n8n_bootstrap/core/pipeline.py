"""Bootstrap pipeline: generate secrets, store them, render the environment."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .config_loader import BootstrapSettings
from .credential_store import CredentialStore
from .environment import SUMMARY_FILENAME, materialize, render
from .errors import ArtifactAlreadyExists, BootstrapError, InvalidSecret, PathUnwritable
from .secret_generator import (
    DEFAULT_SECRET_SPECS,
    GeneratedSecret,
    SecretGenerator,
    SecretSpec,
    ensure_secure_source,
)

logger = logging.getLogger(__name__)


class SecretStatus(str, Enum):
    """What happened to one secret during a run."""
    CREATED = "created"
    OVERWRITTEN = "overwritten"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"  # not attempted because an earlier secret failed


class RunStatus(str, Enum):
    """Overall result of a run."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class SecretOutcome:
    """Per-secret result, without the secret value."""
    name: str
    path: Path
    status: SecretStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (SecretStatus.CREATED, SecretStatus.OVERWRITTEN, SecretStatus.SKIPPED)


@dataclass
class RunReport:
    """Itemized result of a bootstrap run."""
    outcomes: list[SecretOutcome] = field(default_factory=list)
    env_path: Optional[Path] = None
    summary_path: Optional[Path] = None
    error: Optional[BootstrapError] = None

    @property
    def status(self) -> RunStatus:
        if self.error is None and self.env_path is not None and all(o.ok for o in self.outcomes):
            return RunStatus.SUCCESS
        if any(o.ok for o in self.outcomes):
            return RunStatus.PARTIAL
        return RunStatus.FAILED

    @property
    def succeeded(self) -> list[SecretOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[SecretOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def outcome(self, name: str) -> Optional[SecretOutcome]:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None

    def summary_lines(self) -> list[str]:
        """Human readable report, one line per secret plus totals."""
        lines = []
        for o in self.outcomes:
            line = f"{o.status.value:<12} {o.name:<22} {o.path}"
            if o.reason:
                line += f" ({o.reason})"
            lines.append(line)
        if self.env_path:
            lines.append(f"{'written':<12} {'environment':<22} {self.env_path}")
        if self.summary_path:
            lines.append(f"{'written':<12} {'summary':<22} {self.summary_path}")
        if self.error is not None:
            lines.append(f"error: {self.error}")
        lines.append(f"status: {self.status.value}")
        return lines


class BootstrapPipeline:
    """Runs Generator -> Store Writer -> Materializer once."""

    def __init__(
        self,
        base_dir: Path,
        settings: Optional[BootstrapSettings] = None,
        specs: Optional[tuple[SecretSpec, ...]] = None,
        generator: Optional[SecretGenerator] = None,
    ):
        """Initialize with an explicit deployment base directory."""
        self.base_dir = Path(base_dir)
        self.settings = settings or BootstrapSettings()
        self.specs = tuple(specs) if specs is not None else DEFAULT_SECRET_SPECS
        self.generator = generator or SecretGenerator(self.specs)
        self.store = CredentialStore(
            self.settings.secrets_path(self.base_dir),
            overwrite_existing=self.settings.overwrite_existing,
        )

    @property
    def env_path(self) -> Path:
        return self.settings.env_path(self.base_dir)

    @property
    def summary_path(self) -> Path:
        return self.store.secrets_dir / SUMMARY_FILENAME

    def run(self, require_fresh: bool = False) -> RunReport:
        """Execute the full pipeline and return an itemized report.

        ``require_fresh`` turns an existing secret into a failure when
        overwriting is off, instead of keeping it.
        """
        report = RunReport()

        try:
            ensure_secure_source()
        except BootstrapError as e:
            logger.error("%s", e)
            self._fail_all(report, SecretStatus.FAILED, str(e))
            report.error = e
            return report

        try:
            with self.store.lock():
                secrets = self._store_secrets(report, require_fresh)
                if secrets is not None:
                    self._materialize(report, secrets)
        except BootstrapError as e:
            # Lock or generation failed before any write
            logger.error("%s", e)
            self._fail_all(report, SecretStatus.FAILED, str(e))
            report.error = e

        logger.info("Bootstrap finished: %s", report.status.value)
        return report

    def _fail_all(self, report: RunReport, status: SecretStatus, reason: str) -> None:
        report.outcomes = [
            SecretOutcome(spec.name, self.store.path_for(spec), status, reason)
            for spec in self.specs
        ]

    def _store_secrets(self, report: RunReport, require_fresh: bool) -> Optional[list[GeneratedSecret]]:
        """Persist every secret. Returns all values, or None if any failed."""
        overwrite = self.settings.overwrite_existing
        kept: dict[str, GeneratedSecret] = {}
        to_write: list[SecretSpec] = []
        outcomes: dict[str, SecretOutcome] = {}

        for spec in self.specs:
            path = self.store.path_for(spec)
            if not self.store.exists(spec) or overwrite:
                to_write.append(spec)
                continue
            if require_fresh:
                error = ArtifactAlreadyExists(path)
                outcomes[spec.name] = SecretOutcome(spec.name, path, SecretStatus.FAILED, str(error))
                report.error = error
                continue
            try:
                restricted = self.store.restrict(spec)
                kept[spec.name] = self.store.read_secret(spec)
            except (InvalidSecret, PathUnwritable) as e:
                logger.error("%s", e)
                outcomes[spec.name] = SecretOutcome(spec.name, path, SecretStatus.FAILED, e.reason)
                report.error = report.error or e
                continue
            logger.info("Keeping existing %s", path)
            reason = "already exists, permissions restricted" if restricted else "already exists"
            outcomes[spec.name] = SecretOutcome(spec.name, path, SecretStatus.SKIPPED, reason)

        # Generate everything before the first write
        generated = {spec.name: self.generator.generate(spec) for spec in to_write}

        aborted = bool(outcomes) and not self.settings.best_effort and any(
            not o.ok for o in outcomes.values()
        )
        for spec in to_write:
            path = self.store.path_for(spec)
            if aborted:
                outcomes[spec.name] = SecretOutcome(spec.name, path, SecretStatus.ABORTED, "run aborted")
                continue
            existed = path.exists()
            try:
                self.store.store(generated[spec.name], overwrite=overwrite)
            except PathUnwritable as e:
                logger.error("%s", e)
                outcomes[spec.name] = SecretOutcome(spec.name, path, SecretStatus.FAILED, e.reason)
                report.error = report.error or e
                if not self.settings.best_effort:
                    aborted = True
                continue
            status = SecretStatus.OVERWRITTEN if existed else SecretStatus.CREATED
            outcomes[spec.name] = SecretOutcome(spec.name, path, status)

        report.outcomes = [outcomes[spec.name] for spec in self.specs]
        if report.failed:
            logger.warning("%d secret(s) failed, environment not rendered", len(report.failed))
            return None

        return [kept[spec.name] if spec.name in kept else generated[spec.name] for spec in self.specs]

    def _materialize(self, report: RunReport, secrets: list[GeneratedSecret]) -> None:
        secret_paths = {spec.name: self.store.path_for(spec) for spec in self.specs}
        try:
            doc = render(self.settings, secret_paths, self.specs)
            env_path, summary_path = materialize(doc, secrets, self.env_path, self.summary_path)
        except BootstrapError as e:
            logger.error("%s", e)
            report.error = e
            return
        report.env_path = env_path
        report.summary_path = summary_path


def run_bootstrap(
    base_dir: Path,
    settings: Optional[BootstrapSettings] = None,
    require_fresh: bool = False,
) -> RunReport:
    """Run the bootstrap pipeline once."""
    return BootstrapPipeline(base_dir, settings).run(require_fresh=require_fresh)
