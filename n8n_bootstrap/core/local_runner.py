"""Local command execution through invoke."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from invoke import Context
from invoke.exceptions import UnexpectedExit

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a local command execution."""
    stdout: str
    stderr: str
    return_code: int
    success: bool

    @classmethod
    def from_invoke_result(cls, result) -> "CommandResult":
        """Create from an invoke Result object."""
        return cls(
            stdout=result.stdout.strip() if result.stdout else "",
            stderr=result.stderr.strip() if result.stderr else "",
            return_code=result.return_code,
            success=result.return_code == 0
        )


class LocalRunner:
    """Runs shell commands on this machine."""

    def __init__(self, context: Optional[Context] = None):
        """Initialize with an optional invoke context."""
        self.context = context or Context()

    def run_command(
        self,
        command: str,
        cwd: Optional[Path] = None,
        hide: bool = True,
        warn: bool = True
    ) -> CommandResult:
        """Execute a command, optionally inside ``cwd``."""
        logger.debug("Running: %s", command)
        try:
            if cwd is not None:
                with self.context.cd(str(cwd)):
                    result = self.context.run(command, hide=hide, warn=warn, in_stream=False)
            else:
                result = self.context.run(command, hide=hide, warn=warn, in_stream=False)
        except UnexpectedExit as e:
            return CommandResult.from_invoke_result(e.result)
        return CommandResult.from_invoke_result(result)


# Global runner instance
_local_runner: Optional[LocalRunner] = None


def get_local_runner() -> LocalRunner:
    """Get or create the global local runner instance."""
    global _local_runner
    if _local_runner is None:
        _local_runner = LocalRunner()
    return _local_runner
