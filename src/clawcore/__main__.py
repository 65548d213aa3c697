"""
Main entry point for the clawcore CLI.

This module is executed when running `python -m clawcore` or via the `clawcore` executable.
"""

from .cli import app


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
