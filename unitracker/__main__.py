"""
Package entry point.

Allows running the application via:

    python -m unitracker

This simply forwards execution to unitracker.cli.main().
"""

from unitracker.cli import main

if __name__ == "__main__":
    main()
