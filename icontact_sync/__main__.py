"""
Entry point for running icontact_sync as a module.

Usage:
    python -m icontact_sync --help
    python -m icontact_sync sync --dry-run
    python -m icontact_sync daemon start --interval 2h
"""

from icontact_sync.cli import cli

if __name__ == "__main__":
    cli()
