"""
Narrow read-only interfaces over external, shared configuration.

ConfigStore  - git configuration (global + repository)
HostingAPI   - hosting service branch protection (GitHub via `gh api`)

The rule evaluators only see these interfaces, so tests inject fakes
instead of patching subprocess.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.parse import quote

from posture.runner import API_TIMEOUT, run

logger = logging.getLogger(__name__)

# Only this 404 means "unprotected"; a repository the token cannot see is also a 404
NOT_FOUND_MARKERS = ("Branch not protected",)


class ConfigStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        """Effective value of a config key, None when unset."""
        ...


class GitConfigStore:
    """Reads effective git config (repository value wins over global)."""

    def __init__(self, root: Optional[Path] = None):
        self.root = root

    def get(self, key: str) -> Optional[str]:
        cwd = str(self.root) if self.root is not None else None
        result = run(["git", "config", "--get", key], cwd=cwd)
        if not result.ok:
            return None
        return result.output or None


# =============================================================================
# Branch protection
# =============================================================================

@dataclass(frozen=True)
class BranchProtectionState:
    require_pr: bool
    required_reviewers: int
    require_status_checks: bool
    no_force_push: bool
    no_deletion: bool
    require_signed_commits: bool
    strict_status_checks: bool = False
    status_check_contexts: tuple[str, ...] = ()
    dismiss_stale_reviews: bool = False
    require_code_owner_reviews: bool = False
    enforce_admins: bool = False
    has_push_restrictions: bool = False

    @classmethod
    def unprotected(cls) -> "BranchProtectionState":
        return cls(
            require_pr=False,
            required_reviewers=0,
            require_status_checks=False,
            no_force_push=False,
            no_deletion=False,
            require_signed_commits=False,
        )

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "BranchProtectionState":
        """Map a GET .../branches/{branch}/protection response."""
        reviews = payload.get("required_pull_request_reviews")
        review_rules = reviews if isinstance(reviews, dict) else {}
        try:
            reviewers = int(review_rules.get("required_approving_review_count") or 0)
        except (TypeError, ValueError):
            reviewers = 0
        checks = payload.get("required_status_checks")
        contexts = checks.get("contexts") if isinstance(checks, dict) else None
        return cls(
            require_pr=reviews is not None,
            required_reviewers=reviewers,
            require_status_checks=checks is not None,
            no_force_push=_enabled(payload, "allow_force_pushes") is False,
            no_deletion=_enabled(payload, "allow_deletions") is False,
            require_signed_commits=_enabled(payload, "required_signatures") is True,
            strict_status_checks=isinstance(checks, dict) and checks.get("strict") is True,
            status_check_contexts=tuple(str(c) for c in contexts) if isinstance(contexts, list) else (),
            dismiss_stale_reviews=review_rules.get("dismiss_stale_reviews") is True,
            require_code_owner_reviews=review_rules.get("require_code_owner_reviews") is True,
            enforce_admins=_enabled(payload, "enforce_admins") is True,
            has_push_restrictions=payload.get("restrictions") is not None,
        )

    def hardened_payload(self) -> Optional[dict[str, Any]]:
        """
        PUT body that keeps the current rules and blocks force pushes and deletion.

        The PUT replaces the whole protection, so reviews, status checks and
        admin enforcement are carried over. None when push restrictions are
        set: their users, teams and apps are not part of this state.
        """
        if self.has_push_restrictions:
            return None
        status_checks = None
        if self.require_status_checks:
            status_checks = {"strict": self.strict_status_checks, "contexts": list(self.status_check_contexts)}
        reviews = None
        if self.require_pr:
            reviews = {
                "required_approving_review_count": self.required_reviewers,
                "dismiss_stale_reviews": self.dismiss_stale_reviews,
                "require_code_owner_reviews": self.require_code_owner_reviews,
            }
        return {
            "required_status_checks": status_checks,
            "enforce_admins": self.enforce_admins,
            "required_pull_request_reviews": reviews,
            "restrictions": None,
            "allow_force_pushes": False,
            "allow_deletions": False,
        }


def _enabled(payload: dict[str, Any], key: str) -> Optional[bool]:
    section = payload.get(key)
    if not isinstance(section, dict):
        return None
    value = section.get("enabled")
    return value if isinstance(value, bool) else None


@dataclass(frozen=True)
class ProtectionLookup:
    """
    Three-way branch protection query result.

    state set          -> protection configured
    not_found          -> branch has no protection (state None)
    error set          -> could not be determined (access denied, rate limit)
    """
    state: Optional[BranchProtectionState] = None
    not_found: bool = False
    error: Optional[str] = None

    @property
    def indeterminate(self) -> bool:
        return self.error is not None


class HostingAPI(Protocol):
    def branch_protection(self, owner: str, repo: str, branch: str) -> ProtectionLookup:
        ...


class GhHostingAPI:
    """GitHub branch protection through the authenticated `gh` CLI."""

    def __init__(self, gh_cmd: str = "gh", hostname: Optional[str] = None):
        self.gh_cmd = gh_cmd
        self.hostname = hostname

    def branch_protection(self, owner: str, repo: str, branch: str) -> ProtectionLookup:
        endpoint = f"repos/{owner}/{repo}/branches/{quote(branch, safe='')}/protection"
        args = [self.gh_cmd, "api", "-H", "Accept: application/vnd.github+json", endpoint]
        if self.hostname and self.hostname != "github.com":
            args[2:2] = ["--hostname", self.hostname]

        result = run(args, timeout=API_TIMEOUT)
        if result.ok:
            try:
                payload = json.loads(result.stdout)
            except json.JSONDecodeError as e:
                return ProtectionLookup(error=f"unreadable API response: {e}")
            if not isinstance(payload, dict):
                return ProtectionLookup(error="unexpected API response")
            return ProtectionLookup(state=BranchProtectionState.from_api(payload))

        message = result.error_text
        # gh prints the JSON error body on stdout and "gh: ... (HTTP 404)" on stderr
        combined = f"{result.stdout}\n{result.stderr}"
        if any(marker in combined for marker in NOT_FOUND_MARKERS):
            logger.debug("no protection on %s/%s:%s", owner, repo, branch)
            return ProtectionLookup(not_found=True)
        return ProtectionLookup(error=message.splitlines()[-1] if message else "query failed")
