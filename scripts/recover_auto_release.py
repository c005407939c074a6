#!/usr/bin/env python3
"""
Rebuild auto-release timers from the persisted contract deadlines.

Re-arms every locked contract whose deadline is still ahead and fires the
ones that passed while nothing was running. Idempotent: re-arming replaces
the existing timer and a late firing on a resolved contract is discarded.

Typical use with SCHEDULER_BACKEND=rq after a Redis restore or worker outage:

    python scripts/recover_auto_release.py
"""
import argparse
import json
import sys

from escrow.core.runtime import get_engine


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--dry-run", action="store_true", help="only report what would be armed/fired")
    args = parser.parse_args(argv)

    engine = get_engine()
    if args.dry_run:
        from escrow.store.models import LOCKED
        now = engine.clock()
        locked = engine.list_by_status(LOCKED)
        due = [c.id for c in locked if (c.auto_release_deadline or 0) <= now]
        print(json.dumps({"locked": len(locked), "due": due}))
        return 0

    print(json.dumps(engine.recover()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
