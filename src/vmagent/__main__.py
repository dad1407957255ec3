"""CLI entry point for vmagent."""

import sys


def main() -> int:
    """Main entry point for the vmagent CLI."""
    from vmagent.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
