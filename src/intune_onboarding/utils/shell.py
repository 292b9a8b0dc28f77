"""Thin wrapper around subprocess for the macOS command-line tools the tool drives."""

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    args: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, the way a terminal would show them."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandRunner:
    """
    Runs OS commands and captures their output.

    In dry-run mode, commands flagged as mutating are logged and reported as
    successful without being executed; read-only commands still run so the
    workflow can make the same decisions it would make for real.
    """

    def __init__(self, dry_run: bool = False, timeout: Optional[float] = 600.0):
        self.dry_run = dry_run
        self.timeout = timeout

    def run(self, args: Sequence[str], *, input: Optional[str] = None,
            mutates: bool = False, timeout: Optional[float] = None) -> CommandResult:
        args = tuple(str(a) for a in args)
        command_line = " ".join(args)

        if mutates and self.dry_run:
            logger.info(f"DRY RUN: {command_line}")
            return CommandResult(args, 0)

        logger.debug(f"Running: {command_line}")
        try:
            completed = subprocess.run(
                args,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {args[0]} ({e})")
            return CommandResult(args, 127, "", str(e))
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {command_line}")
            return CommandResult(args, 124, "", "timed out")

        if completed.returncode != 0:
            logger.debug(f"{args[0]} exited with {completed.returncode}: {completed.stderr.strip()}")
        return CommandResult(args, completed.returncode, completed.stdout or "", completed.stderr or "")
