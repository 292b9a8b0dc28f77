from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

from intune_onboarding.utils.shell import CommandResult, CommandRunner


class BaseService(ABC):
    """Abstract base class for services that drive macOS command-line tools."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.runner, "dry_run", False))

    def _run(self, args: Sequence[str], **kwargs) -> CommandResult:
        return self.runner.run(args, **kwargs)

    def _read(self, args: Sequence[str]) -> str:
        """Run a read-only command and return its stripped stdout ("" on failure)."""
        result = self.runner.run(args)
        return result.stdout.strip() if result.ok else ""

    @abstractmethod
    def status(self) -> Dict[str, Any]:
        """Report the current state this service manages"""
        pass
