"""procsup CLI entry point (python -m procsup)."""

import sys

from .cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
