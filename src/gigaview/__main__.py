"""Entry point for the gigaview viewer."""

import logging
import sys

from gigaview.config import LOG_LEVEL
from gigaview.ui.app import run_app


def main() -> int:
    """Run the gigaview viewer application."""
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run_app(sys.argv)


if __name__ == "__main__":
    sys.exit(main())
