"""GitHub Migrator

Migrates teams from GitHub or Azure DevOps into a GitHub organization:
creates each mapped destination team and grants it access to the
repositories that have already been migrated.
"""

__version__ = '0.1.0'

from .cli.main import main

__all__ = ['main']
