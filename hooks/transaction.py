r"""Atomic file primitives for hooks that rewrite files the user owns.

The posture guards touch two kinds of files:

- files inside the user's repository (``.pre-commit-config.yaml`` and the
  git ``pre-commit`` hook script), which are replaced atomically so an
  editor or a concurrent ``git commit`` never sees a half-written file;
- the shared audit log under CLAUDE_HOME, which several sessions may append
  to at the same moment and is therefore written under a portalocker lock.

**Core primitives:**
- atomic_write_text: Atomic write-or-fail using temp file + rename
- append_jsonl: Locked single-line append of a JSON record

**Guarantees:**
- Atomicity: Writes complete fully or not at all (no partial states)
- Mode preservation: an existing file keeps its permission bits, so an
  executable hook script stays executable
- Isolation (append_jsonl only): portalocker provides cross-platform locking

**Error handling:**
- LockTimeoutError: Acquire timeout (default 5s)
- TransactionError: Any other write failure
"""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any

import portalocker

# Configuration constants
DEFAULT_TIMEOUT = 5.0


# Exception hierarchy
class TransactionError(Exception):
    """Base exception for transaction failures."""
    pass


class LockTimeoutError(TransactionError):
    """Raised when lock acquisition times out."""
    pass


def atomic_write_text(
    path: Path | str,
    content: str,
    fsync: bool = True,
) -> None:
    """Write text content atomically using temp file + rename.

    Line endings are written exactly as given (no platform translation),
    which matters for shell scripts that git executes under WSL.

    Args:
        path: Target file path
        content: Text content to write
        fsync: Force OS flush to disk (default: True)

    Raises:
        TransactionError: On write or rename failure
    """
    path = Path(path)
    tmp_file = None
    tmp_path = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else None

        tmp_file = tempfile.NamedTemporaryFile(
            mode='w',
            encoding='utf-8',
            newline='',
            dir=path.parent,
            delete=False,
            suffix='.tmp'
        )
        tmp_path = Path(tmp_file.name)

        tmp_file.write(content)
        tmp_file.flush()

        if fsync:
            os.fsync(tmp_file.fileno())

        tmp_file.close()

        if mode is not None:
            os.chmod(tmp_path, mode)
        else:
            # NamedTemporaryFile creates 0600; new files get the umask default
            umask = os.umask(0)
            os.umask(umask)
            os.chmod(tmp_path, 0o666 & ~umask)

        # Atomic rename
        os.replace(tmp_path, path)

    except Exception as e:
        if tmp_file is not None and not tmp_file.closed:
            tmp_file.close()
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise TransactionError(f"Atomic text write failed for {path}: {e}") from e


def append_jsonl(
    path: Path | str,
    record: Any,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Append one JSON record as a single line under an exclusive lock.

    Args:
        path: JSONL file path (created with parents if missing)
        record: JSON-serializable object
        timeout: Lock acquisition timeout in seconds (default: 5.0)

    Raises:
        LockTimeoutError: If lock acquisition times out
        TransactionError: On serialization or write failure
    """
    path = Path(path)

    try:
        line = json.dumps(record, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise TransactionError(f"Record for {path} is not JSON-serializable: {e}") from e

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with portalocker.Lock(
            str(path),
            mode='a',
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
            timeout=timeout,
            encoding='utf-8',
        ) as f:
            f.write(line + "\n")
            f.flush()
    except portalocker.exceptions.LockException as e:
        raise LockTimeoutError(f"Lock timeout appending to {path} after {timeout}s") from e
    except OSError as e:
        raise TransactionError(f"Append failed for {path}: {e}") from e
