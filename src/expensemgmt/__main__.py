"""Entry point for ``python -m expensemgmt``."""

import asyncio

from expensemgmt.api import run_server


def main() -> None:
    """Launch the expense management API server."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
