"""Data models for migration mappings, teams and runs."""

from .mapping import (
    MappingFilter,
    MappingStatus,
    MappingUpdate,
    MigrationStatus,
    SyncStatus,
    TeamMapping,
    TeamRepository,
)
from .team import Team, TeamMember, TeamRepositoryRef
from .run import MigrationRun, RunHandle, RunScope, RunStatus

__all__ = [
    'MappingFilter',
    'MappingStatus',
    'MappingUpdate',
    'MigrationStatus',
    'SyncStatus',
    'TeamMapping',
    'TeamRepository',
    'Team',
    'TeamMember',
    'TeamRepositoryRef',
    'MigrationRun',
    'RunHandle',
    'RunScope',
    'RunStatus',
]
