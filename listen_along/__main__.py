"""Package entry point for ``python -m listen_along``."""

import sys

if __name__ == "__main__":
    from listen_along.cli import main
    sys.exit(main())
