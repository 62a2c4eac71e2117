"""Services screen: container status and compose lifecycle actions."""

from functools import partial

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, DataTable, Static
from textual.worker import Worker, WorkerState

from ..base_screen import BaseScreen


class ServicesScreen(BaseScreen):
    """Shows ``docker compose ps`` and runs up/down/restart/update/backup."""

    BINDINGS = [
        ("r", "refresh", "Refresh"),
    ]

    ACTIONS = {
        "btn-up": ("Starting stack", "compose_up"),
        "btn-down": ("Stopping stack", "compose_down"),
        "btn-restart": ("Restarting stack", "compose_restart"),
        "btn-update": ("Updating images", "update"),
        "btn-backup": ("Writing backup", "backup"),
    }

    def compose(self) -> ComposeResult:
        """Compose the services screen."""
        yield Container(
            Static("Services", classes="title"),
            Container(
                DataTable(id="services-table"),
                classes="box",
            ),
            Horizontal(
                Button("Up", id="btn-up", variant="success"),
                Button("Down", id="btn-down", variant="error"),
                Button("Restart", id="btn-restart", variant="warning"),
                Button("Update", id="btn-update", variant="primary"),
                Button("Backup", id="btn-backup", variant="default"),
                Button("Refresh", id="btn-refresh", variant="default"),
                id="action-buttons",
            ),
            Static("", id="status-message"),
            id="main-content",
        )

    def on_mount(self) -> None:
        """Initialize the table and load data."""
        table = self.query_one("#services-table", DataTable)
        table.add_columns("Service", "Container", "State", "Status", "Ports")
        self.action_refresh()

    def action_refresh(self) -> None:
        """Reload container status."""
        table = self.query_one("#services-table", DataTable)
        table.clear()

        if not self.docker.is_docker_running():
            self.show_error("Docker is not running")
            return

        containers = self.docker.compose_ps()
        for c in containers:
            state = "[green]running[/green]" if c.running else "[red]stopped[/red]"
            table.add_row(c.service, c.name, state, c.status, c.ports)
        if not containers:
            self.show_status("No containers. Press Up to start the stack.")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button presses."""
        if event.button.id == "btn-refresh":
            self.action_refresh()
            return

        if event.button.id not in self.ACTIONS:
            return

        label, method = self.ACTIONS[event.button.id]
        if method in ("compose_up", "compose_restart", "update"):
            missing = self.docker.check_project_setup(self.load_settings())
            if missing:
                self.show_error(f"Missing {missing[0]}. Run Bootstrap first.")
                return

        self.show_status(f"{label}...")
        work = getattr(self.docker, method)
        if method == "backup":
            work = partial(work, self.load_settings())
        self.run_worker(work, name="compose", thread=True, exclusive=True)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Refresh after a compose action finishes."""
        if event.worker.name != "compose":
            return

        if event.state == WorkerState.SUCCESS:
            success, output = event.worker.result
            if success:
                self.show_success(f"Backup written to {output}" if output.endswith(".tar.gz") else "Done")
            else:
                self.show_error(output.strip().splitlines()[-1] if output.strip() else "Command failed")
            self.action_refresh()
        elif event.state == WorkerState.ERROR:
            self.show_error(f"Error: {event.worker.error}")
