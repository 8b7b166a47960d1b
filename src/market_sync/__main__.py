from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from market_sync.app import run
from market_sync.settings import known_entity_names


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="market_sync",
        description="Push source changes to the remote store through its SQL command endpoint.",
    )
    parser.add_argument(
        "--entity",
        dest="entities",
        action="append",
        choices=known_entity_names(),
        default=[],
        help="Limit the cycle to this entity; repeat for several. Defaults to all.",
    )
    parser.add_argument(
        "--no-reconcile",
        dest="reconcile",
        action="store_false",
        help="Skip the full-extent reconciliation of snapshot entities.",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Repeat the cycle every CYCLE_INTERVAL_S seconds.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    sys.exit(run(entities=args.entities, reconcile=args.reconcile, loop=args.loop))


if __name__ == "__main__":
    main()
