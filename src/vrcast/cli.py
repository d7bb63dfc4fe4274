"""
Command-line entry points for vrcast.

``vrcast-server`` runs the publisher and ``vrcast-listen`` prints snapshots
received from the network. Both are declared as console scripts in
pyproject.toml.
"""

import sys

from .client import listen_main
from .server import main


def cli_main() -> None:
    """
    Entry point for the vrcast-server command.

    Delegates to :func:`vrcast.server.main`, which parses arguments and runs
    the poll loop until interrupted.
    """
    try:
        main()
    except KeyboardInterrupt:
        print("\nPublisher interrupted by user")
        sys.exit(0)
    except SystemExit:
        # Let SystemExit pass through as-is (from main())
        raise
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


def listen_cli_main() -> None:
    """Entry point for the vrcast-listen command."""
    try:
        listen_main()
    except KeyboardInterrupt:
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
