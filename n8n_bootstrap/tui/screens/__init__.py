"""TUI screens."""

from .bootstrap import BootstrapScreen
from .logs import LogViewerScreen
from .services import ServicesScreen

__all__ = [
    "BootstrapScreen",
    "LogViewerScreen",
    "ServicesScreen",
]
