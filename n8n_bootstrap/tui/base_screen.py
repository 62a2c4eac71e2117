"""Shared screen helpers."""

from pathlib import Path
from typing import Optional

from textual.css.query import NoMatches
from textual.screen import Screen
from textual.widgets import Static

from ..core.config_loader import BootstrapSettings, get_config_loader
from ..core.docker_manager import DockerManager

STATUS_COLORS = {
    "error": "red",
    "success": "green",
    "warning": "yellow",
}


class BaseScreen(Screen):
    """Screen bound to the app's deployment directory.

    Subclasses that report progress include a ``Static`` with id
    ``status-message``; without one, messages become notifications.
    """

    _docker: Optional[DockerManager] = None

    @property
    def base_dir(self) -> Path:
        return self.app.base_dir

    @property
    def docker(self) -> DockerManager:
        if self._docker is None:
            self._docker = DockerManager(self.base_dir)
        return self._docker

    def load_settings(self) -> BootstrapSettings:
        return get_config_loader().load_settings()

    def show_status(self, message: str, level: str = "info") -> None:
        """Show ``message`` in the status line.

        Args:
            message: Plain text, square brackets are escaped
            level: "info", "error", "success" or "warning"
        """
        try:
            status = self.query_one("#status-message", Static)
        except NoMatches:
            self.notify(message, severity="error" if level == "error" else "information")
            return

        text = message.replace("[", "\\[")
        color = STATUS_COLORS.get(level)
        status.update(f"[{color}]{text}[/{color}]" if color else text)

    def show_error(self, message: str) -> None:
        self.show_status(message, "error")

    def show_success(self, message: str) -> None:
        self.show_status(message, "success")

    def clear_status(self) -> None:
        try:
            self.query_one("#status-message", Static).update("")
        except NoMatches:
            pass
