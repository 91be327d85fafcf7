"""
Command Resolver - locate an executable that actually runs.

Strategies are tried in order and the first candidate that answers
`--version` wins:

1. bare name on PATH
2. name.exe on PATH (Windows executables exposed through WSL interop)
3. Windows Python "Scripts" directories under the Windows user profile,
   reached from WSL through /mnt/<drive>/ (pip installs land there when
   the Windows interpreter was used)

A path that exists but fails to run (stale shim, broken venv) is never
reported as available.
"""

import glob
import logging
import re
import shutil
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from hooks.compat import home_dir
from posture.runner import LOOKUP_TIMEOUT, run

logger = logging.getLogger(__name__)

# Relative to the Windows user profile, "{cmd}" replaced by the tool name
WINDOWS_SCRIPT_GLOBS = (
    "AppData/Local/Programs/Python/*/Scripts/{cmd}.exe",
    "AppData/Local/Packages/PythonSoftwareFoundation.Python.*/LocalCache/local-packages/Python*/Scripts/{cmd}.exe",
    "AppData/Roaming/Python/Python*/Scripts/{cmd}.exe",
)

_DRIVE_PATH = re.compile(r"^([A-Za-z]):[\\/]?(.*)$")

Strategy = Callable[[str], Iterable[str]]


def windows_to_wsl_path(path: str) -> Optional[str]:
    """Convert "C:\\Users\\me" to "/mnt/c/Users/me"; None if not a drive path."""
    match = _DRIVE_PATH.match(path.strip())
    if not match:
        return None
    drive, rest = match.groups()
    rest = rest.replace("\\", "/").strip("/")
    return f"/mnt/{drive.lower()}/{rest}" if rest else f"/mnt/{drive.lower()}"


def windows_user_profile() -> Optional[str]:
    """The Windows %USERPROFILE% as a WSL path, when running under WSL."""
    # Only a Linux home can be a WSL home; skip the cmd.exe round trip elsewhere
    if "/home/" not in home_dir():
        return None
    result = run(["cmd.exe", "/c", "echo", "%USERPROFILE%"])
    if not result.ok or "%" in result.output:
        return None
    return windows_to_wsl_path(result.output)


# =============================================================================
# Strategies
# =============================================================================

def _on_path(cmd: str) -> Iterable[str]:
    found = shutil.which(cmd)
    return [found] if found else []


def _exe_on_path(cmd: str) -> Iterable[str]:
    if cmd.lower().endswith(".exe"):
        return []
    found = shutil.which(f"{cmd}.exe")
    return [found] if found else []


def _windows_python_scripts(cmd: str) -> Iterator[str]:
    profile = windows_user_profile()
    if not profile:
        return
    for pattern in WINDOWS_SCRIPT_GLOBS:
        matches = sorted(glob.glob(str(Path(profile) / pattern.format(cmd=cmd))))
        # First match per pattern, like `ls pattern | head -1`
        if matches:
            yield matches[0]


STRATEGIES: tuple[Strategy, ...] = (
    _on_path,
    _exe_on_path,
    _windows_python_scripts,
)


def runs(path: str, timeout: float = LOOKUP_TIMEOUT) -> bool:
    """True when `path --version` exits 0 within the timeout."""
    return run([path, "--version"], timeout=timeout).ok


def resolve(name: str, strategies: Iterable[Strategy] = STRATEGIES) -> Optional[str]:
    """
    Find a working executable for ``name``.

    Args:
        name: Command name without extension
        strategies: Ordered candidate generators (evaluated lazily)

    Returns:
        Path of the first candidate that runs, or None.
    """
    for strategy in strategies:
        for candidate in strategy(name):
            if runs(candidate):
                logger.debug("resolved %s -> %s", name, candidate)
                return candidate
            logger.debug("candidate for %s does not run: %s", name, candidate)
    logger.debug("could not resolve %s", name)
    return None
