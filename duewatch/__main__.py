"""
Package entry point.

Allows running the application via:

    python -m duewatch

This simply forwards execution to duewatch.cli.main().
"""

from duewatch.cli import main

if __name__ == "__main__":
    main()
