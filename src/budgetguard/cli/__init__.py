"""budgetguard CLI package.

Example:
    $ budgetguard rollback check --env production
"""

from __future__ import annotations

from budgetguard.cli.main import cli, main

__all__: list[str] = ["cli", "main"]
