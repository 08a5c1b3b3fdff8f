from __future__ import annotations

import logging
import os

from .app import run


def main() -> int:
    """Entry point for running the reaction trainer from the command line."""
    logging.basicConfig(
        level=os.environ.get("QUICKREFLEX_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
