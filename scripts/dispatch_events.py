#!/usr/bin/env python3
"""Dev entrypoint for replaying recorded events through the host.

Usage:
    # Dispatch a JSON-lines file of CloudEvents
    python scripts/dispatch_events.py events.jsonl --subscribers myapp.subscribers:SUBSCRIBERS

    # Replay as a redelivery (enables max-attempt skipping)
    python scripts/dispatch_events.py events.jsonl --subscribers myapp.subscribers:SUBSCRIBERS --attempt 4

Environment variables:
    EVENTS_MAX_ATTEMPTS: Attempts before a failing event is skipped (default: unset)
    EVENTS_MULTIPLE_MESSAGES: Dispatch the file concurrently (default: false)
    EVENTS_NOT_SUBSCRIBED_HANDLING: Handling for unrouted events (default: continue_silent)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from eventhost.runner import configure_host_logging, run_dispatch_file


def main() -> int:
    """Main entrypoint for event replay."""
    parser = argparse.ArgumentParser(
        description="Dispatch recorded events through the event subscriber host",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "file",
        help="JSON-lines file with one CloudEvent per line",
    )
    parser.add_argument(
        "--subscribers",
        required=True,
        help="Subscriber list as module:attribute",
    )
    parser.add_argument(
        "--attempt",
        type=int,
        default=0,
        help="Delivery attempt to report for every event",
    )

    # Logging
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging to warnings only",
    )

    args = parser.parse_args()

    if args.verbose:
        configure_host_logging(logging.DEBUG)
    elif args.quiet:
        configure_host_logging(logging.WARNING)
    else:
        configure_host_logging(logging.INFO)

    logger = logging.getLogger(__name__)

    try:
        result = run_dispatch_file(args.file, args.subscribers, attempt=args.attempt)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Dispatch failed: {e}", exc_info=True)
        return 1

    print("\n--- Dispatch Summary ---")
    print(f"Processed: {len(result.results)}")
    print(f"Raised: {len(result.errors)}")
    print(f"Unprocessed: {result.unprocessed}")

    for item in result.results:
        print(f"  {item.status.value}: {item.subject} {item.action or ''}".rstrip())
    for error in result.errors:
        print(f"  raised: {error.result.status.value}: {error.result.reason}")

    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
