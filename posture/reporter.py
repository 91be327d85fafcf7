"""
Reporter - render guard reports for the session.

Two channels:
  stderr  - full diagnostics: one line per check, remediation under failures
  stdout  - a one-line summary inside <system-reminder> tags for the agent

Runs are also appended to the posture audit log
($CLAUDE_HOME/security/posture-audit.jsonl). Only guard names, statuses and
check names are recorded; details may contain local paths and are left out.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from hooks.compat import get_claude_home
from hooks.transaction import TransactionError, append_jsonl
from posture.checks import GuardReport, GuardStatus
from posture.probe import RepoContext
from posture.settings import Settings

logger = logging.getLogger(__name__)

GUARD_ICONS = {
    "signing": "🔑",
    "branch-protection": "🛡️",
    "pre-commit": "🔒",
}
PASS_MARK = "✅"
GAP_MARK = "⚠️"
FIX_INDENT = "     "


def audit_log_path() -> Path:
    return get_claude_home() / "security" / "posture-audit.jsonl"


# =============================================================================
# Formatting
# =============================================================================

def _heading(report: GuardReport) -> str:
    title = f"{report.title} ({report.subject})" if report.subject else report.title
    return f"{GUARD_ICONS.get(report.guard, '•')} {title}"


def format_diagnostics(report: GuardReport) -> list[str]:
    lines = [f"{PASS_MARK} {action}" for action in report.actions]
    lines.extend(f"{GAP_MARK} {warning}" for warning in report.warnings)

    status = report.status
    if status is GuardStatus.SKIPPED:
        lines.append(f"{_heading(report)}: skipped ({report.skipped})")
        return lines
    if status is GuardStatus.INDETERMINATE:
        lines.append(f"{_heading(report)}: {report.indeterminate}")
        return lines

    lines.append(f"{_heading(report)}: {len(report.passing)}/{len(report.checks)} checks passing")
    for check in report.checks:
        mark = PASS_MARK if check.passed else GAP_MARK
        lines.append(f"  {mark} {check.name}: {check.detail}")
        if not check.passed and check.fix:
            fix_lines = check.fix.splitlines()
            lines.append(f"{FIX_INDENT}Fix: {fix_lines[0]}")
            lines.extend(f"{FIX_INDENT}     {line}" for line in fix_lines[1:])
    return lines


def format_summary(report: GuardReport) -> Optional[str]:
    """One-line summary for the agent, None when there is nothing to say."""
    status = report.status
    if status is GuardStatus.SKIPPED:
        return None
    if status is GuardStatus.INDETERMINATE:
        return f"{GAP_MARK} {report.title}: could not be determined ({report.indeterminate})"
    if status is GuardStatus.GAPS:
        gaps = report.gaps
        names = "; ".join(check.name for check in gaps)
        return f"{GAP_MARK} {report.title}: {len(gaps)} gap(s) — {names}"
    return f"{PASS_MARK} {report.title}: {report.summary_ok or 'all checks passing'}"


def emit(report: GuardReport, out: Optional[TextIO] = None, err: Optional[TextIO] = None) -> None:
    out = sys.stdout if out is None else out
    err = sys.stderr if err is None else err

    for line in format_diagnostics(report):
        print(line, file=err)

    summary = format_summary(report)
    if summary:
        print(f"<system-reminder>\n{summary}\n</system-reminder>", file=out)


# =============================================================================
# Audit log
# =============================================================================

def audit_record(report: GuardReport, ctx: Optional[RepoContext], session_id: Optional[str] = None) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "session_id": session_id,
        "repo": ctx.slug if ctx is not None else None,
        "branch": ctx.default_branch if ctx is not None else None,
        "guard": report.guard,
        "status": report.status.value,
        "checks": len(report.checks),
        "gaps": [check.name for check in report.gaps],
        "actions": list(report.actions),
        "warnings": len(report.warnings),
    }


def record_run(
    report: GuardReport,
    ctx: Optional[RepoContext],
    settings: Settings,
    session_id: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> bool:
    """Append the run to the audit log. Failures are logged, never raised."""
    if not settings.audit_log:
        return False
    path = log_file if log_file is not None else audit_log_path()
    try:
        append_jsonl(path, audit_record(report, ctx, session_id))
    except TransactionError as e:
        logger.warning("could not append to audit log %s: %s", path, e)
        return False
    return True


def read_audit_log(log_file: Optional[Path] = None, limit: int = 20) -> list[dict]:
    path = log_file if log_file is not None else audit_log_path()
    if not path.exists():
        return []
    events = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                pass
    return events[-limit:]


def print_audit_log(log_file: Optional[Path] = None, out: Optional[TextIO] = None) -> None:
    """Show recent posture guard runs."""
    out = sys.stdout if out is None else out
    events = read_audit_log(log_file)
    if not events:
        print("No posture guard runs logged yet.", file=out)
        return

    print("Recent Posture Guard Runs:", file=out)
    print("-" * 60, file=out)
    for event in events:
        ts = str(event.get("timestamp", ""))[:19]
        status = event.get("status", "unknown")
        guard = event.get("guard", "-")
        repo = event.get("repo") or "-"
        gaps = len(event.get("gaps") or [])
        print(f"{ts}  {guard:18} {status:14} {repo}  gaps={gaps}", file=out)
