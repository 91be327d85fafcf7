"""
Posture guard settings.

Resolution order (later wins):
  1. Built-in defaults
  2. $CLAUDE_HOME/security/posture-guard.json
  3. Environment variables

Environment Variables:
  POSTURE_GUARD_DISABLE       - comma list of guards to skip
                                (signing, branch-protection, pre-commit)
  POSTURE_GUARD_NO_INSTALL    - never install pre-commit/trufflehog
  POSTURE_GUARD_NO_AUDIT      - do not append to the audit log
  POSTURE_GUARD_GITLEAKS_REV  - pinned gitleaks revision for new blocks
  POSTURE_GUARD_DEBUG         - DEBUG-level logging to the debug log
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from hooks.compat import get_claude_home

GUARD_NAMES = ("signing", "branch-protection", "pre-commit")

DEFAULT_GITLEAKS_REV = "v8.22.1"
DEFAULT_TRUFFLEHOG_INSTALL_URL = (
    "https://raw.githubusercontent.com/trufflesecurity/trufflehog/main/scripts/install.sh"
)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    disabled_guards: set[str] = field(default_factory=set)
    install_tools: bool = True
    audit_log: bool = True
    debug: bool = False
    gitleaks_rev: str = DEFAULT_GITLEAKS_REV
    trufflehog_install_url: str = DEFAULT_TRUFFLEHOG_INSTALL_URL
    hosting_hosts: tuple[str, ...] = ("github.com",)

    def is_enabled(self, guard: str) -> bool:
        return guard not in self.disabled_guards


def settings_path() -> Path:
    return get_claude_home() / "security" / "posture-guard.json"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _names(value) -> set[str]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        return set()
    return {item.strip() for item in items if item.strip()}


def load_settings(environ: Optional[Mapping[str, str]] = None, path: Optional[Path] = None) -> Settings:
    """Load posture guard settings from defaults, config file and environment."""
    env = os.environ if environ is None else environ
    settings = Settings()

    config_file = path if path is not None else settings_path()
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, OSError):
            config = {}
        if isinstance(config, dict):
            if "disabled_guards" in config:
                settings.disabled_guards = _names(config["disabled_guards"])
            if isinstance(config.get("install_tools"), bool):
                settings.install_tools = config["install_tools"]
            if isinstance(config.get("audit_log"), bool):
                settings.audit_log = config["audit_log"]
            if isinstance(config.get("gitleaks_rev"), str) and config["gitleaks_rev"].strip():
                settings.gitleaks_rev = config["gitleaks_rev"].strip()
            if isinstance(config.get("trufflehog_install_url"), str):
                settings.trufflehog_install_url = config["trufflehog_install_url"]
            hosts = _names(config.get("hosting_hosts"))
            if hosts:
                settings.hosting_hosts = tuple(sorted(h.lower() for h in hosts))

    if env.get("POSTURE_GUARD_DISABLE"):
        settings.disabled_guards |= _names(env["POSTURE_GUARD_DISABLE"])
    if _flag(env.get("POSTURE_GUARD_NO_INSTALL")):
        settings.install_tools = False
    if _flag(env.get("POSTURE_GUARD_NO_AUDIT")):
        settings.audit_log = False
    if env.get("POSTURE_GUARD_GITLEAKS_REV", "").strip():
        settings.gitleaks_rev = env["POSTURE_GUARD_GITLEAKS_REV"].strip()
    settings.debug = bool(env.get("POSTURE_GUARD_DEBUG"))

    return settings
