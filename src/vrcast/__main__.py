"""
Main entry point for running the vrcast publisher as a module.

This allows the package to be executed with:
    python -m vrcast

The installed command does the same:
    vrcast-server
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
