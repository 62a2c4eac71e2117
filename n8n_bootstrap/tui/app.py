"""Main TUI application using Textual."""

from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Header

from ..core.config_loader import get_config_loader
from .screens.bootstrap import BootstrapScreen
from .screens.logs import LogViewerScreen
from .screens.services import ServicesScreen


class BootstrapApp(App):
    """n8n deployment bootstrap TUI."""

    TITLE = "n8n Bootstrap"
    SUB_TITLE = "Secrets, configuration and compose lifecycle"

    CSS = """
    Screen {
        background: $surface;
    }

    #main-content {
        height: 100%;
        padding: 1;
    }

    .box {
        border: solid $primary;
        padding: 1;
        margin: 1;
    }

    .title {
        text-style: bold;
        color: $text;
        padding: 1;
    }

    DataTable {
        height: auto;
        max-height: 20;
    }

    Button {
        margin: 1;
    }

    Input {
        margin: 1 0;
    }

    Label {
        margin: 1 0 0 0;
    }

    Checkbox {
        margin: 0 1;
    }

    Select {
        width: 30;
        margin: 1 0;
    }

    RichLog {
        height: 100%;
        border: solid $primary;
    }

    #log-container {
        height: 1fr;
        margin: 1;
    }

    #bootstrap-form {
        height: auto;
    }

    #options-row, #action-buttons, #controls {
        height: auto;
    }

    #status-message {
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("b", "switch_screen('bootstrap')", "Bootstrap", show=True),
        Binding("s", "switch_screen('services')", "Services", show=True),
        Binding("l", "switch_screen('logs')", "Logs", show=True),
        Binding("q", "quit", "Quit", show=True),
    ]

    SCREENS = {
        "bootstrap": BootstrapScreen,
        "services": ServicesScreen,
        "logs": LogViewerScreen,
    }

    def __init__(self, base_dir: Path):
        super().__init__()
        self.base_dir = Path(base_dir)

    def compose(self) -> ComposeResult:
        """Compose the main application."""
        yield Header()
        yield Footer()

    def on_mount(self) -> None:
        """Open the bootstrap form on first run, the services view otherwise."""
        config_loader = get_config_loader(self.base_dir)

        if config_loader.config_exists():
            self.push_screen("services")
        else:
            self.push_screen("bootstrap")


def run_app(base_dir: Path):
    """Run the TUI application."""
    app = BootstrapApp(base_dir)
    app.run()
