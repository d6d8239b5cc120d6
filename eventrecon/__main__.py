"""
Package entry point.

Allows running the engine via:

    python -m eventrecon run --dry-run

This simply forwards execution to eventrecon.cli.main().
"""

from eventrecon.cli import main

if __name__ == "__main__":
    main()
