#!/usr/bin/env python3
"""
Run lifecycle sweeps once from the command line (cron, manual catch-up).

Usage:
    python scripts/run_sweep.py carts
    python scripts/run_sweep.py --all
    python scripts/run_sweep.py discount_reminders --no-lock
"""
import argparse
import json
import os
import sys

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from storefront.api.deps import build_runner, get_clock, get_dispatcher, get_store, get_windows
from storefront.config import configure_logging, settings
from storefront.db import init_db
from storefront.services.sweep_runner import SWEEP_KINDS


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run checkout-lifecycle sweeps once.")
    parser.add_argument("kinds", nargs="*", help=", ".join(SWEEP_KINDS))
    parser.add_argument("--all", action="store_true", help="run every sweep kind")
    parser.add_argument("--no-lock", action="store_true", help="skip the per-kind file lock")
    args = parser.parse_args(argv)

    kinds = list(SWEEP_KINDS) if args.all else args.kinds
    if not kinds:
        parser.error("name at least one sweep kind or pass --all")
    unknown = [k for k in kinds if k not in SWEEP_KINDS]
    if unknown:
        parser.error(f"unknown sweep kind(s): {', '.join(unknown)}")

    configure_logging(settings.LOG_LEVEL)
    init_db()
    runner = build_runner(get_store(), get_dispatcher(), get_clock(), get_windows())

    status = 0
    for kind in kinds:
        report = runner.run(kind) if args.no_lock else runner.run_exclusive(kind)
        if report is None:
            print(f"{kind}: already running, skipped")
            continue
        print(f"{kind}: {json.dumps(report, default=str)}")
        if report.get("errored"):
            status = 1
    return status


if __name__ == "__main__":
    sys.exit(main())
