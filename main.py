"""Command line entry for running a Buscalo apartments.com search."""

import sys

from cli.search import run_search_cli


def main() -> int:
    """Run the search CLI with the process arguments."""
    return run_search_cli()


if __name__ == "__main__":
    sys.exit(main())
