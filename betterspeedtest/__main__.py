"""Entry point for ``python -m betterspeedtest``."""

import sys

from betterspeedtest.cli import main

if __name__ == "__main__":
    sys.exit(main())
