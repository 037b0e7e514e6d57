"""Allow ``python -m platform_updater``."""

import sys

from platform_updater.cli import main

if __name__ == "__main__":
    sys.exit(main())
