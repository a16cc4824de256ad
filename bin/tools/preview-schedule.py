#!/usr/bin/env python3
"""Print the next fire instants for the stored (or environment) settings."""

from __future__ import annotations

import argparse
import sys
from datetime import datetime

from mindful.config import NotifierConfig, load_settings
from mindful.datetime_utils import as_aware, local_now, to_local
from mindful.durable_store import JsonFileStore
from mindful.scheduler import FireTimeScheduler, describe_schedule


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Preview upcoming mindful reminder times")
    parser.add_argument("-n", "--count", type=int, default=10, help="Number of fire instants to print")
    parser.add_argument("--from", dest="start", help="ISO-8601 reference instant (defaults to now)")
    parser.add_argument("--env-only", action="store_true", help="Ignore stored settings and use the environment")
    args = parser.parse_args(argv)

    config = NotifierConfig.from_env()
    settings = None if args.env_only else load_settings(JsonFileStore(config.store_path))
    settings = settings or config.defaults

    try:
        reference = as_aware(datetime.fromisoformat(args.start)) if args.start else local_now()
    except ValueError:
        print(f"Error: invalid --from value {args.start!r}", file=sys.stderr)
        return 1

    print(f"{describe_schedule(settings.schedule)}, quiet hours {settings.quiet_hours}")
    scheduler = FireTimeScheduler(settings.schedule, settings.quiet_hours)
    for _ in range(max(0, args.count)):
        decision = scheduler.next_fire(reference)
        suffix = " (after quiet hours)" if decision.deferred_past_quiet else ""
        print(f"{to_local(decision.instant).isoformat(timespec='minutes')}{suffix}")
        reference = decision.instant
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
