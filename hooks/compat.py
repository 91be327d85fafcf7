#!/usr/bin/env python3
"""
Cross-platform compatibility helpers for the posture guard hooks.

Provides platform-aware replacements for:
- stdin reads that must never stall the session (bounded by a timeout)
- Path resolution (CLAUDE_HOME, HOME expansion)
- Sub-agent detection

Public API:
    get_claude_home() - CLAUDE_HOME path with platform defaults
    expand_home(path) - expand a leading "~" using $HOME
    read_stdin_text(timeout) - read all of stdin, or None on timeout
    is_subagent(environ) - True when running inside a sub-agent context

Usage:
    from hooks.compat import get_claude_home, read_stdin_text
"""

import os
import sys
import threading
from pathlib import Path

# Sub-agent project directories live under this fragment
SUBAGENT_DIR_MARKER = "/.claude/Agents/"


def get_claude_home() -> Path:
    """Return CLAUDE_HOME with platform-aware default."""
    env = os.environ.get("CLAUDE_HOME")
    if env:
        return Path(env)
    # Both Windows and Linux default to ~/.claude
    return Path.home() / ".claude"


def home_dir() -> str:
    """Return $HOME, falling back to the platform home directory."""
    return os.environ.get("HOME") or str(Path.home())


def expand_home(path: str) -> str:
    """Expand a leading "~" the way a POSIX shell would, using $HOME."""
    if path == "~" or path.startswith("~/"):
        return home_dir() + path[1:]
    return path


def read_stdin_text(timeout: float, stream=None) -> str | None:
    """
    Read all of stdin with an upper bound on the wait.

    A daemon thread does the blocking read so the main thread can give up
    after ``timeout`` seconds on any platform (SIGALRM is POSIX-only and
    cannot interrupt a pipe read on Windows). A caller that never closes
    stdin therefore costs at most ``timeout`` seconds.

    Args:
        timeout: Seconds to wait for EOF
        stream: Stream to read from (defaults to sys.stdin)

    Returns:
        The text read, or None on timeout or read failure
    """
    source = stream if stream is not None else sys.stdin
    if source is None:
        return None

    box: dict[str, str] = {}

    def _reader() -> None:
        try:
            buffer = getattr(source, "buffer", None)
            if buffer is not None:
                box["text"] = buffer.read().decode("utf-8", errors="replace")
            else:
                box["text"] = source.read()
        except (OSError, ValueError):
            pass

    reader = threading.Thread(target=_reader, name="stdin-reader", daemon=True)
    reader.start()
    reader.join(timeout)
    if reader.is_alive():
        return None
    return box.get("text")


def is_subagent(environ=None) -> bool:
    """True when a sub-agent launched this process (guards stay silent)."""
    env = os.environ if environ is None else environ
    if env.get("CLAUDE_AGENT_TYPE") is not None:
        return True
    project_dir = env.get("CLAUDE_PROJECT_DIR", "").replace("\\", "/")
    return SUBAGENT_DIR_MARKER in project_dir
