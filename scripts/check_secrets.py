#!/usr/bin/env python3
"""
Check Secrets Status
Purpose: Show where the capacity report would take the vCenter password from
"""

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from capacity_secrets import PROJECT_DIR, SecretsManager


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Print the secrets priority order, whether the secrets file exists and
    whether the password environment variable is set. Never prints secret
    values.
    """
    parser = argparse.ArgumentParser(description="Show vCenter password sources")
    parser.add_argument(
        "--project-dir",
        default=str(PROJECT_DIR),
        help="Directory containing config/capacity-secrets.yaml",
    )
    args = parser.parse_args(argv)

    secrets_mgr = SecretsManager(Path(args.project_dir))

    print("\n" + "=" * 60)
    print("Capacity Report Secrets Status")
    print("=" * 60 + "\n")

    print(secrets_mgr.get_secrets_info())

    print("\n" + "=" * 60 + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
