"""
Environment Prober - repository, remote, default branch and WSL detection.

probe(cwd) is computed once per guard invocation. A directory outside a git
repository, or a repository without a recognized hosting remote, is a normal
"not applicable" state: RepoContext says so and callers return early.
"""

import logging
import platform
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from posture.runner import run, succeeds

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"
FALLBACK_BRANCH = "main"
DEFAULT_HOSTS = ("github.com",)

# Kernel release fragments identifying WSL (e.g. "5.15.153.1-microsoft-standard-WSL2")
COMPAT_LAYER_MARKERS = ("microsoft", "wsl")

_OWNER_NAME = r"(?P<owner>[\w.-]+)/(?P<name>[\w.-]+?)(?:\.git)?/?$"

# Ordered: URL forms first so "https://host/..." never reaches the scp-like form
_REMOTE_PATTERNS = (
    # ssh://git@host[:port]/owner/name
    re.compile(r"^ssh://(?:[^@/]+@)?(?P<host>[\w.-]+)(?::\d+)?/" + _OWNER_NAME),
    # https://[user@]host[:port]/owner/name
    re.compile(r"^https?://(?:[^@/]+@)?(?P<host>[\w.-]+)(?::\d+)?/" + _OWNER_NAME),
    # git@host:owner/name
    re.compile(r"^(?:[\w.-]+@)?(?P<host>[\w.-]+):" + _OWNER_NAME),
)


@dataclass(frozen=True)
class RemoteIdentity:
    host: str
    owner: str
    name: str


@dataclass(frozen=True)
class RepoContext:
    root: Path
    is_repository: bool
    remote_owner: Optional[str] = None
    remote_name: Optional[str] = None
    default_branch: str = FALLBACK_BRANCH
    is_compat_layer: bool = False
    remote_host: Optional[str] = None

    @property
    def has_remote(self) -> bool:
        return self.remote_owner is not None and self.remote_name is not None

    @property
    def slug(self) -> Optional[str]:
        if not self.has_remote:
            return None
        return f"{self.remote_owner}/{self.remote_name}"


# =============================================================================
# Repository
# =============================================================================

def is_git_repository(cwd: str) -> bool:
    """Check repository membership without producing output."""
    return succeeds(["git", "rev-parse", "--git-dir"], cwd=cwd)


def find_repo_root(cwd: str) -> Optional[Path]:
    """Absolute repository root (cwd may be a subdirectory)."""
    result = run(["git", "rev-parse", "--show-toplevel"], cwd=cwd)
    if not result.ok or not result.output:
        return None
    return Path(result.output).resolve()


def git_path(root: Path, relative: str) -> Path:
    """
    Resolve a path inside the git directory.

    Uses `git rev-parse --git-path`, which honours core.hooksPath and
    worktrees; falls back to <root>/.git/<relative>.
    """
    result = run(["git", "rev-parse", "--git-path", relative], cwd=str(root))
    if result.ok and result.output:
        resolved = Path(result.output)
        if not resolved.is_absolute():
            resolved = root / resolved
        return resolved
    return root / ".git" / relative


# =============================================================================
# Remote
# =============================================================================

def parse_remote_url(url: str) -> Optional[RemoteIdentity]:
    """
    Extract host/owner/name from an SSH or HTTPS remote URL.

    Examples:
        >>> parse_remote_url("git@github.com:acme/widgets.git")
        RemoteIdentity(host='github.com', owner='acme', name='widgets')
        >>> parse_remote_url("https://github.com/acme/widgets")
        RemoteIdentity(host='github.com', owner='acme', name='widgets')
        >>> parse_remote_url("/srv/git/widgets.git") is None
        True
    """
    url = (url or "").strip()
    for pattern in _REMOTE_PATTERNS:
        match = pattern.match(url)
        if match:
            return RemoteIdentity(match.group("host").lower(), match.group("owner"), match.group("name"))
    return None


def remote_identity(root: Path, remote: str = DEFAULT_REMOTE) -> Optional[RemoteIdentity]:
    result = run(["git", "remote", "get-url", remote], cwd=str(root))
    if not result.ok:
        return None
    return parse_remote_url(result.output)


def default_branch(root: Path, remote: str = DEFAULT_REMOTE) -> str:
    """
    Resolve the default branch name.

    Order: remote HEAD symbolic ref, remote-tracked main, remote-tracked
    master, then the fixed fallback "main".
    """
    cwd = str(root)
    prefix = f"refs/remotes/{remote}/"
    head = run(["git", "symbolic-ref", f"{prefix}HEAD"], cwd=cwd)
    if head.ok and head.output.startswith(prefix):
        return head.output[len(prefix):]

    for candidate in ("main", "master"):
        ref = f"refs/remotes/{remote}/{candidate}"
        if run(["git", "rev-parse", "--verify", "--quiet", ref], cwd=cwd).ok:
            return candidate

    return FALLBACK_BRANCH


# =============================================================================
# Compatibility layer (WSL)
# =============================================================================

def is_compat_layer_release(release: Optional[str]) -> bool:
    """True when a kernel release string carries a WSL vendor marker."""
    if not release:
        return False
    lowered = release.lower()
    return any(marker in lowered for marker in COMPAT_LAYER_MARKERS)


def kernel_release() -> Optional[str]:
    try:
        release = platform.uname().release
    except OSError:
        release = ""
    if release:
        return release
    result = run(["uname", "-r"])
    return result.output if result.ok else None


def detect_compat_layer() -> bool:
    return is_compat_layer_release(kernel_release())


# =============================================================================
# Probe
# =============================================================================

def probe(cwd: str, hosts: Iterable[str] = DEFAULT_HOSTS) -> RepoContext:
    """
    Build the RepoContext for a working directory.

    Args:
        cwd: Session working directory (may be a repository subdirectory)
        hosts: Hosting services whose remotes are recognized

    Returns:
        RepoContext; is_repository=False or has_remote=False means the
        guards have nothing to do.
    """
    cwd_path = Path(cwd)
    if not cwd_path.is_dir() or not is_git_repository(cwd):
        logger.debug("not a git repository: %s", cwd)
        return RepoContext(root=cwd_path, is_repository=False)

    root = find_repo_root(cwd)
    if root is None:
        return RepoContext(root=cwd_path, is_repository=False)

    recognized = {h.lower() for h in hosts}
    identity = remote_identity(root)
    if identity is not None and identity.host not in recognized:
        logger.debug("remote host %s not recognized", identity.host)
        identity = None

    context = RepoContext(
        root=root,
        is_repository=True,
        remote_owner=identity.owner if identity else None,
        remote_name=identity.name if identity else None,
        remote_host=identity.host if identity else None,
        default_branch=default_branch(root),
        is_compat_layer=detect_compat_layer(),
    )
    logger.debug("probed %s: remote=%s branch=%s wsl=%s",
                 root, context.slug, context.default_branch, context.is_compat_layer)
    return context
