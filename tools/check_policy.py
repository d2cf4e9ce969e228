#!/usr/bin/env python3
"""Policy invariant checks against the shipped config directory."""

import sys
from pathlib import Path

from operator_finance.policy import PolicyResolver
from operator_finance.policy.checks import check_policy

ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"


def check(config_dir: Path = CONFIG_DIR) -> int:
    errors = check_policy(PolicyResolver.from_config_dir(config_dir))
    if errors:
        print("Policy check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Policy check passed.")
    return 0


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else CONFIG_DIR
    raise SystemExit(check(target))
