"""Compose service log viewer."""

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, RichLog, Select, Static

from ..base_screen import BaseScreen
from ...core.compose import service_names

ALL_SERVICES = "all"
TAIL_CHOICES = (50, 100, 200, 500)


class LogViewerScreen(BaseScreen):
    """Tail of ``docker compose logs`` for one service or the whole stack."""

    BINDINGS = [
        ("r", "refresh_logs", "Refresh"),
    ]

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Service Logs", classes="title"),
            Horizontal(
                Select(
                    [("All services", ALL_SERVICES)] + [(name, name) for name in service_names(self.load_settings())],
                    id="log-service",
                    value=ALL_SERVICES,
                    allow_blank=False,
                ),
                Select(
                    [(f"Last {n} lines", n) for n in TAIL_CHOICES],
                    id="log-tail",
                    value=100,
                    allow_blank=False,
                ),
                Button("Reload", id="btn-reload", variant="primary"),
                Button("Clear", id="btn-clear", variant="warning"),
                id="controls",
            ),
            Container(
                RichLog(id="log-output", highlight=True, markup=False),
                id="log-container",
            ),
            Static("", id="status-message"),
            id="main-content",
        )

    def on_mount(self) -> None:
        self.action_refresh_logs()

    def action_refresh_logs(self) -> None:
        """Reload the log tail for the selected service."""
        service = self.query_one("#log-service", Select).value
        tail = self.query_one("#log-tail", Select).value
        output = self.query_one("#log-output", RichLog)

        logs = self.docker.compose_logs(
            tail=tail,
            service=None if service == ALL_SERVICES else service,
        )
        output.clear()
        if logs:
            output.write(logs)
            self.clear_status()
        else:
            self.show_status("No logs. Is the stack running?", "warning")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-reload":
            self.action_refresh_logs()
        elif event.button.id == "btn-clear":
            self.query_one("#log-output", RichLog).clear()

    def on_select_changed(self, event: Select.Changed) -> None:
        self.action_refresh_logs()
