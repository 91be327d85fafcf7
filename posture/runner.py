"""
Command Runner - best-effort external command execution.

Every external call the guards make (git, gh, pre-commit, package managers,
install scripts) goes through run(). Absence of a tool is an expected
branch, so the result is a three-way outcome instead of an exception:

    OK         exit status 0, stdout captured
    NOT_FOUND  the executable does not exist
    ERRORED    non-zero exit, timeout, or OS-level failure

run() never raises.
"""

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# Timeouts (seconds)
LOOKUP_TIMEOUT = 5
API_TIMEOUT = 10
HOOK_INSTALL_TIMEOUT = 30
SCRIPT_INSTALL_TIMEOUT = 60
PACKAGE_INSTALL_TIMEOUT = 120


class Outcome(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERRORED = "errored"


@dataclass(frozen=True)
class CommandResult:
    outcome: Outcome
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def not_found(self) -> bool:
        return self.outcome is Outcome.NOT_FOUND

    @property
    def output(self) -> str:
        """Stripped stdout."""
        return self.stdout.strip()

    @property
    def error_text(self) -> str:
        """Best description of a failure, for diagnostics."""
        text = (self.stderr or self.stdout).strip()
        if text:
            return text
        if self.not_found:
            return "command not found"
        return f"exit status {self.returncode}"


def run(
    args: Sequence[str],
    cwd: Optional[str] = None,
    timeout: float = LOOKUP_TIMEOUT,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """
    Run a command with captured output.

    Args:
        args: Program and arguments (never a shell string)
        cwd: Working directory
        timeout: Seconds before the call counts as failed
        input_text: Text fed to stdin
        env: Full replacement environment

    Returns:
        CommandResult with the outcome classified.
    """
    argv = list(args)
    try:
        result = subprocess.run(
            argv,
            cwd=cwd,
            input=input_text,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError:
        logger.debug("not found: %s", argv[0] if argv else "<empty>")
        return CommandResult(Outcome.NOT_FOUND)
    except subprocess.TimeoutExpired:
        logger.debug("timed out after %ss: %s", timeout, argv)
        return CommandResult(Outcome.ERRORED, stderr=f"timed out after {timeout}s")
    except (OSError, ValueError) as e:
        # PermissionError for a non-executable file, NotADirectoryError for a bad cwd
        logger.debug("failed to start %s: %s", argv, e)
        return CommandResult(Outcome.ERRORED, stderr=str(e))

    if result.returncode != 0:
        logger.debug("exit %s: %s", result.returncode, argv)
        return CommandResult(Outcome.ERRORED, result.stdout, result.stderr, result.returncode)

    logger.debug("ok: %s", argv)
    return CommandResult(Outcome.OK, result.stdout, result.stderr, 0)


def succeeds(args: Sequence[str], cwd: Optional[str] = None, timeout: float = LOOKUP_TIMEOUT) -> bool:
    """Zero-output existence check: True when the command exits 0."""
    return run(args, cwd=cwd, timeout=timeout).ok
