"""Terminal user interface."""

from .app import BootstrapApp, run_app

__all__ = ["BootstrapApp", "run_app"]
