"""
Posture Guard - SessionStart security posture checks.

Checks the working copy the session starts in for three supply-chain
controls and reports gaps to the agent. Only the pre-commit guard changes
anything (config file, tool installs, git hook); the other two only
suggest commands. The session is never blocked: every path exits 0.

Usage:
  python hooks/posture-guard.py                    # all guards (default)
  python hooks/posture-guard.py signing            # hardware-backed commit signing
  python hooks/posture-guard.py branch-protection  # default branch protection (gh)
  python hooks/posture-guard.py pre-commit         # TruffleHog + Gitleaks hooks
  python hooks/posture-guard.py audit              # show recent runs

Hook input (stdin, optional):
  {"session_id": "...", "cwd": "...", "hook_event_name": "SessionStart"}

Environment Variables:
  CLAUDE_AGENT_TYPE      - set inside sub-agents (all guards skipped)
  CLAUDE_PROJECT_DIR     - sub-agent project dirs contain /.claude/Agents/
  SSH_SK_PROVIDER        - FIDO2 middleware (WSL2 bridge check)
  POSTURE_GUARD_*        - see posture.settings
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence, TextIO

from hooks.compat import get_claude_home, is_subagent, read_stdin_text
from posture.checks import (
    GuardReport,
    evaluate_branch_protection,
    evaluate_precommit,
    evaluate_signing,
)
from posture.installer import ensure_available, install_git_hook
from posture.precommit_config import reconcile_config
from posture.probe import RepoContext, probe
from posture.reporter import emit, print_audit_log, record_run
from posture.resolver import resolve
from posture.settings import GUARD_NAMES, Settings, load_settings
from posture.stores import ConfigStore, GhHostingAPI, GitConfigStore, HostingAPI

logger = logging.getLogger("posture")

STDIN_TIMEOUT = 0.5
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MODES = GUARD_NAMES + ("all", "audit")

Resolver = Callable[[str], Optional[str]]


def configure_logging(settings: Settings) -> None:
    """Route library logging to $CLAUDE_HOME/debug/posture-guard.log."""
    log_dir = get_claude_home() / "debug"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_dir / "posture-guard.log", encoding="utf-8")
        level = logging.DEBUG if settings.debug else logging.INFO
    except OSError:
        handler = logging.StreamHandler(sys.stderr)
        level = logging.WARNING

    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    root = logging.getLogger("posture")
    root.handlers = [handler]
    root.setLevel(level)
    root.propagate = False


# =============================================================================
# Session input
# =============================================================================

@dataclass(frozen=True)
class SessionInput:
    cwd: str
    session_id: Optional[str] = None
    hook_event_name: Optional[str] = None


def parse_session_input(raw: Optional[str], fallback_cwd: str) -> SessionInput:
    """Absent, malformed or partial input falls back to the process cwd."""
    if not raw or not raw.strip():
        return SessionInput(cwd=fallback_cwd)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("ignoring malformed hook input")
        return SessionInput(cwd=fallback_cwd)
    if not isinstance(data, dict):
        return SessionInput(cwd=fallback_cwd)

    cwd = data.get("cwd")
    session_id = data.get("session_id")
    event = data.get("hook_event_name")
    return SessionInput(
        cwd=cwd if isinstance(cwd, str) and cwd else fallback_cwd,
        session_id=session_id if isinstance(session_id, str) else None,
        hook_event_name=event if isinstance(event, str) else None,
    )


def read_session_input(stream: Optional[TextIO] = None, timeout: float = STDIN_TIMEOUT) -> SessionInput:
    return parse_session_input(read_stdin_text(timeout, stream), os.getcwd())


# =============================================================================
# Guards
# =============================================================================

def run_signing_guard(
    ctx: RepoContext,
    store: Optional[ConfigStore] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GuardReport:
    return evaluate_signing(ctx, store if store is not None else GitConfigStore(ctx.root), environ)


def run_branch_guard(
    ctx: RepoContext,
    api: Optional[HostingAPI] = None,
    resolver: Resolver = resolve,
) -> GuardReport:
    if api is None:
        gh = resolver("gh")
        if gh is None:
            return GuardReport(
                guard="branch-protection",
                title="Branch protection",
                subject=f"{ctx.slug}:{ctx.default_branch}",
                skipped="gh CLI not available",
                warnings=["gh CLI not found; install it and run `gh auth login` to check branch protection"],
            )
        api = GhHostingAPI(gh, hostname=ctx.remote_host)
    return evaluate_branch_protection(ctx, api)


def run_precommit_guard(ctx: RepoContext, settings: Settings, resolver: Resolver = resolve) -> GuardReport:
    """
    Self-heal the secret-scanning setup, then evaluate it.

    Order: tools (pre-commit, trufflehog), config reconciliation, git hook
    registration. A tool that cannot be found or installed skips the guard
    with a warning.
    """
    actions: list[str] = []
    tools = {}
    for tool in ("pre-commit", "trufflehog"):
        result = ensure_available(
            tool,
            allow_install=settings.install_tools,
            script_url=settings.trufflehog_install_url if tool == "trufflehog" else None,
            resolver=resolver,
        )
        actions.extend(result.messages)
        if not result.available:
            logger.info("%s unavailable: %s", tool, result.detail)
            return GuardReport(
                guard="pre-commit",
                title="Pre-commit guard",
                skipped=f"{tool} not available",
                actions=actions,
                warnings=[result.detail or f"{tool} not found"],
            )
        tools[tool] = result.path

    outcome = reconcile_config(ctx.root, settings.gitleaks_rev)
    actions.extend(outcome.actions)
    warnings = list(outcome.warnings)

    hook = install_git_hook(ctx.root, tools["pre-commit"])
    if hook.error:
        warnings.append(f"pre-commit install failed: {hook.error}")
    if hook.installed:
        actions.append("Installed git pre-commit hook")
    if hook.repaired:
        actions.append("Repaired pre-commit hook script (line endings/shebang)")

    report = evaluate_precommit(outcome.text)
    report.actions = actions
    report.warnings = warnings
    return report


def run_guard(
    name: str,
    ctx: RepoContext,
    settings: Settings,
    store: Optional[ConfigStore] = None,
    api: Optional[HostingAPI] = None,
    resolver: Resolver = resolve,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[GuardReport]:
    """Run one guard; None when it does not apply or is disabled."""
    if not settings.is_enabled(name):
        logger.debug("guard %s disabled", name)
        return None
    if not ctx.is_repository or not ctx.has_remote:
        return None

    if name == "signing":
        return run_signing_guard(ctx, store, environ)
    if name == "branch-protection":
        return run_branch_guard(ctx, api, resolver)
    if name == "pre-commit":
        return run_precommit_guard(ctx, settings, resolver)
    raise ValueError(f"unknown guard: {name}")


def run_session(
    mode: str,
    session: SessionInput,
    settings: Settings,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
) -> list[GuardReport]:
    ctx = probe(session.cwd, hosts=settings.hosting_hosts)
    if not ctx.is_repository or not ctx.has_remote:
        logger.debug("not applicable in %s", session.cwd)
        return []

    names = GUARD_NAMES if mode == "all" else (mode,)
    reports = []
    for name in names:
        report = run_guard(name, ctx, settings)
        if report is None:
            continue
        emit(report, out, err)
        record_run(report, ctx, settings, session.session_id)
        reports.append(report)
    return reports


# =============================================================================
# Main Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="posture-guard",
        description="SessionStart security posture checks (commit signing, branch protection, secret scanning)",
    )
    parser.add_argument("mode", nargs="?", default="all", help=f"one of: {', '.join(MODES)} (default: all)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Hook entry point. Always returns 0."""
    args, _ = build_parser().parse_known_args(argv)
    if args.mode not in MODES:
        # Never fail the session over a bad hook registration
        print(f"Unknown mode: {args.mode}", file=sys.stderr)
        return 0

    if args.mode == "audit":
        print_audit_log()
        return 0
    if is_subagent():
        return 0

    try:
        settings = load_settings()
        configure_logging(settings)
        session = read_session_input()
        run_session(args.mode, session, settings)
    except Exception as e:
        logger.exception("posture guard failed")
        print(f"PostureGuard hook error: {e}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
