"""
Command line entry point.

    python -m gbpsync          serve the HTTP API
    python -m gbpsync tick     run one scheduler tick and print the summary
"""

import argparse
import asyncio

from .main import main, tick


def run() -> None:
    parser = argparse.ArgumentParser(prog="gbpsync", description="Google Business Profile sync engine")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "tick"],
        help="serve the API (default) or run a single scheduler tick",
    )
    args = parser.parse_args()

    if args.command == "tick":
        asyncio.run(tick())
    else:
        asyncio.run(main())


if __name__ == "__main__":
    run()
