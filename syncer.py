#!/usr/bin/env python3
"""
Catalog sync: discovers new episodes on the source site, resolves every embed
server to a playable URL, enriches with TMDB artwork and persists the result.
- Sequential passes to stay under the source site's rate limits.
- Episodes with a single working server are re-resolved on a 3h/5h/10h schedule.
- --watch keeps running passes on a fixed interval.
"""

import argparse
import json
import logging
import os
import sys

from config.settings import ConfigError, load_settings
from scheduler.jobs.sync_pass import build_sync_context, run_sync_pass
from scheduler.runner import run_forever

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(log_dir: str) -> None:
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        filename=os.path.join(log_dir, "syncer.log"),
        level=logging.INFO,
        format=LOG_FORMAT,
    )
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console.setLevel(logging.INFO)
    logging.getLogger("").addHandler(console)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Sync the episode catalog from the source site.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single sync pass and exit (default).")
    mode.add_argument("--watch", action="store_true", help="Run sync passes every POLL_INTERVAL_SECONDS.")
    parser.add_argument("--log-dir", default="logs", help="Directory for syncer.log.")
    args = parser.parse_args(argv)

    configure_logging(args.log_dir)
    try:
        settings = load_settings()
    except ConfigError as exc:
        logging.error("Configuration error: %s", exc)
        return 2

    context = build_sync_context(settings)
    if args.watch:
        run_forever(context)
        return 0

    summary = run_sync_pass(context)
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
