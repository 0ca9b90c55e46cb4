#!/usr/bin/env python3
"""btagger - retention tagging for SurrealDB and TiKV backups.

Examples:
    # Get help
    python -m main --help
    python -m main surrealdb --help

    # Show the tag set and how each period was decided
    python -m main tags --explain

    # Preview the commands a backup would run
    python -m main tikv --bucket backups --pd pd:2379 --dry-run
"""

from cli.main import cli

if __name__ == '__main__':
    cli()
