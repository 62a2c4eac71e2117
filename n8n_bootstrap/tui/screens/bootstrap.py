"""Bootstrap screen: collect operator inputs and generate artifacts."""

from pydantic import ValidationError
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, Checkbox, Input, Label, RichLog, Static
from textual.worker import Worker, WorkerState

from ..base_screen import BaseScreen
from ...core.cert_generator import CertificateManager
from ...core.compose import COMPOSE_FILENAME, write_compose
from ...core.config_loader import BootstrapSettings, get_config_loader
from ...core.errors import BootstrapError
from ...core.pipeline import RunReport, RunStatus, run_bootstrap


class BootstrapScreen(BaseScreen):
    """Form for domain, email and secret options, plus a run log."""

    BINDINGS = [
        ("g", "generate", "Generate"),
    ]

    def compose(self) -> ComposeResult:
        """Compose the bootstrap screen."""
        yield Container(
            Static("Bootstrap Deployment", classes="title"),
            Vertical(
                Label("Domain"),
                Input(placeholder="n8n.yourdomain.com", id="domain"),
                Label("Email"),
                Input(placeholder="n8n@localdomain.com", id="email"),
                Label("Secrets directory"),
                Input(placeholder="secrets", id="secrets-dir"),
                Horizontal(
                    Checkbox("Overwrite existing secrets", id="overwrite"),
                    Checkbox("Continue after write failures", id="best-effort"),
                    Checkbox("Generate certificates", value=True, id="certs"),
                    id="options-row",
                ),
                Horizontal(
                    Button("Generate", id="btn-generate", variant="success"),
                    Button("Save Settings", id="btn-save", variant="primary"),
                    id="action-buttons",
                ),
                Static("", id="status-message"),
                classes="box",
                id="bootstrap-form",
            ),
            Container(
                RichLog(id="run-log", highlight=True, markup=True),
                id="log-container",
            ),
            id="main-content",
        )

    def on_mount(self) -> None:
        """Fill the form from bootstrap.yaml."""
        try:
            settings = self.load_settings()
        except ValidationError as e:
            self.show_error(f"Invalid bootstrap.yaml: {e}")
            return

        self.query_one("#domain", Input).value = settings.domain
        self.query_one("#email", Input).value = settings.email
        self.query_one("#secrets-dir", Input).value = settings.secrets_dir
        self.query_one("#overwrite", Checkbox).value = settings.overwrite_existing
        self.query_one("#best-effort", Checkbox).value = settings.best_effort
        self.query_one("#certs", Checkbox).value = settings.certificates.enabled

    def add_log(self, message: str, level: str = "info") -> None:
        """Append a line to the run log."""
        log = self.query_one("#run-log", RichLog)
        safe = message.replace("[", "\\[")
        if level == "error":
            log.write(f"[red]{safe}[/red]")
        elif level == "success":
            log.write(f"[green]{safe}[/green]")
        else:
            log.write(safe)

    def collect_settings(self) -> BootstrapSettings:
        """Merge form values into the stored settings."""
        data = self.load_settings().model_dump()
        data["domain"] = self.query_one("#domain", Input).value.strip()
        data["email"] = self.query_one("#email", Input).value.strip()
        data["secrets_dir"] = self.query_one("#secrets-dir", Input).value.strip() or "secrets"
        data["overwrite_existing"] = self.query_one("#overwrite", Checkbox).value
        data["best_effort"] = self.query_one("#best-effort", Checkbox).value
        data["certificates"]["enabled"] = self.query_one("#certs", Checkbox).value
        return BootstrapSettings(**data)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button presses."""
        if event.button.id == "btn-generate":
            self.action_generate()
        elif event.button.id == "btn-save":
            self.save()

    def save(self) -> None:
        try:
            settings = self.collect_settings()
        except ValidationError as e:
            self.show_error(f"Invalid settings: {e.errors()[0]['msg']}")
            return
        get_config_loader().save_settings(settings)
        self.show_success("Settings saved")

    def action_generate(self) -> None:
        """Validate the form and run the bootstrap in a worker thread."""
        try:
            self._settings = self.collect_settings()
        except ValidationError as e:
            self.show_error(f"Invalid settings: {e.errors()[0]['msg']}")
            return

        self.query_one("#btn-generate", Button).disabled = True
        self.query_one("#run-log", RichLog).clear()
        self.show_status("Generating...")
        self.run_worker(self._generate_worker, name="bootstrap", thread=True)

    def _generate_worker(self) -> RunReport:
        """Worker that writes secrets, .env, certificates and compose file."""
        settings = self._settings

        def log(msg: str, level: str = "info"):
            self.app.call_from_thread(self.add_log, msg, level)

        report = run_bootstrap(self.base_dir, settings)
        for line in report.summary_lines():
            log(line)
        if report.status != RunStatus.SUCCESS:
            return report

        try:
            if settings.certificates.enabled:
                certs = CertificateManager(
                    settings.certs_path(self.base_dir),
                    overwrite_existing=settings.overwrite_existing,
                )
                certs.get_or_create(settings.domain, settings.certificates.validity_days)
                log(f"Certificates ready in {certs.certs_dir}")
            if not (self.base_dir / COMPOSE_FILENAME).exists():
                path = write_compose(self.base_dir, settings)
                log(f"Wrote {path}")
        except BootstrapError as e:
            log(str(e), "error")
        return report

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Report the outcome when the worker finishes."""
        if event.worker.name != "bootstrap":
            return

        if event.state == WorkerState.SUCCESS:
            self.query_one("#btn-generate", Button).disabled = False
            report = event.worker.result
            if report.status == RunStatus.SUCCESS:
                get_config_loader().save_settings(self._settings)
                self.show_success(f"Done. Admin password is in {report.summary_path}")
            elif report.status == RunStatus.PARTIAL:
                self.show_status(f"Partial: {report.error}", "warning")
            else:
                self.show_error(f"Failed: {report.error}")
        elif event.state == WorkerState.ERROR:
            self.query_one("#btn-generate", Button).disabled = False
            self.show_error(f"Error: {event.worker.error}")
