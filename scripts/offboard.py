#!/usr/bin/env python3
"""
Simple offboarding wrapper script, e.g. for a Jamf policy or a sudo one-liner.
Usage: sudo python offboard.py [--dry-run]
"""

import subprocess
import sys
from pathlib import Path


def main():
    dry_run = "--dry-run" in sys.argv[1:]

    cmd = [sys.executable, "-m", "intune_onboarding.cli.app", "run"]
    cmd.append("--dry-run" if dry_run else "--no-dry-run")

    print(f"Running Intune onboarding {'(DRY RUN)' if dry_run else '(PRODUCTION)'}")
    print(f"Command: {' '.join(cmd)}")
    print()

    try:
        result = subprocess.run(cmd, cwd=Path(__file__).parent.parent)
        sys.exit(result.returncode)
    except KeyboardInterrupt:
        print("\nOffboarding cancelled by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
