"""Unit tests for hooks/transaction.py file primitives."""
import json
import os
import stat
import threading

import pytest

from hooks.transaction import TransactionError, append_jsonl, atomic_write_text


# ==============================================================================
# atomic_write_text Tests
# ==============================================================================

def test_atomic_write_text(tmp_path):
    """Verify atomic_write_text creates file with correct content."""
    target = tmp_path / "test.txt"
    content = "repos:\n  - repo: local\n"

    atomic_write_text(target, content)

    assert target.read_text(encoding='utf-8') == content


def test_atomic_write_text_creates_parents(tmp_path):
    target = tmp_path / "a" / "b" / "config.yaml"

    atomic_write_text(target, "x\n")

    assert target.exists()


def test_atomic_write_text_keeps_line_endings(tmp_path):
    """Verify no newline translation happens on write."""
    target = tmp_path / "hook"

    atomic_write_text(target, "#!/usr/bin/env bash\nexec pre-commit\n")

    assert target.read_bytes() == b"#!/usr/bin/env bash\nexec pre-commit\n"


def test_atomic_write_text_unicode(tmp_path):
    """Verify atomic_write_text handles unicode content correctly."""
    target = tmp_path / "unicode.txt"
    content = "Hello 世界! 🌍 Émoji test: ñ ü ö"

    atomic_write_text(target, content)

    assert target.read_text(encoding='utf-8') == content


def test_atomic_write_text_preserves_mode(tmp_path):
    """Verify an executable hook script stays executable after rewrite."""
    target = tmp_path / "pre-commit"
    target.write_text("old\n")
    target.chmod(0o755)

    atomic_write_text(target, "new\n")

    assert stat.S_IMODE(target.stat().st_mode) == 0o755
    assert target.read_text() == "new\n"


def test_atomic_write_text_cleanup_on_failure(tmp_path):
    """Verify no orphaned .tmp files and a TransactionError on failure."""
    target = tmp_path / "is-a-dir"
    target.mkdir()

    with pytest.raises(TransactionError):
        atomic_write_text(target, "content")

    assert list(tmp_path.glob("*.tmp")) == []


# ==============================================================================
# append_jsonl Tests
# ==============================================================================

def test_append_jsonl_appends_lines(tmp_path):
    target = tmp_path / "security" / "audit.jsonl"

    append_jsonl(target, {"guard": "signing", "status": "ok"})
    append_jsonl(target, {"guard": "pre-commit", "status": "gaps"})

    lines = target.read_text(encoding='utf-8').splitlines()
    assert [json.loads(line)["guard"] for line in lines] == ["signing", "pre-commit"]


def test_append_jsonl_rejects_unserializable(tmp_path):
    target = tmp_path / "audit.jsonl"

    with pytest.raises(TransactionError):
        append_jsonl(target, {"bad": object()})

    assert not target.exists()


def test_append_jsonl_concurrent(tmp_path):
    """Verify 10 concurrent writers produce 10 intact lines."""
    target = tmp_path / "concurrent.jsonl"

    def write(i):
        append_jsonl(target, {"n": i}, timeout=10)

    threads = [threading.Thread(target=write, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    records = [json.loads(line) for line in target.read_text(encoding='utf-8').splitlines()]
    assert sorted(r["n"] for r in records) == list(range(10))


@pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="permission bits not enforced")
def test_append_jsonl_unwritable(tmp_path):
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0o500)
    try:
        with pytest.raises(TransactionError):
            append_jsonl(locked / "audit.jsonl", {"a": 1})
    finally:
        locked.chmod(0o700)
