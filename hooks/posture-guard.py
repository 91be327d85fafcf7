#!/usr/bin/env python3
"""
Posture Guard Hook - SessionStart security posture checks.

Thin entry point registered in settings.json; the logic lives in
posture.guards.

Usage:
  python posture-guard.py [signing|branch-protection|pre-commit|all|audit]

Settings registration:
  "SessionStart": [{"hooks": [{"type": "command",
      "command": "python3 ~/.claude/hooks/posture-guard.py all"}]}]
"""

import sys
from pathlib import Path

# Add parent directory to sys.path for hooks.* and posture.* imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from posture.guards import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
