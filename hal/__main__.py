"""
Entry point for running hal as a module.

Allows running as: python -m hal
"""

from hal.cli import cli_main

if __name__ == "__main__":
    cli_main()
