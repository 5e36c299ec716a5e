"""Team mapping models and migration status rules."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, validator


class MappingStatus(str, Enum):
    """Assignment state of a mapping, owned by the user."""

    UNMAPPED = 'unmapped'
    MAPPED = 'mapped'
    SKIPPED = 'skipped'


class MigrationStatus(str, Enum):
    """Execution state of a mapping, owned by the orchestrator."""

    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @classmethod
    def _missing_(cls, value):
        # Legacy rows with an empty or unknown status have never run
        return cls.PENDING


class SyncStatus(str, Enum):
    """Completeness of a mapping, derived from its counters."""

    PENDING = 'pending'
    TEAM_ONLY = 'team_only'
    NEEDS_SYNC = 'needs_sync'
    PARTIAL = 'partial'
    COMPLETE = 'complete'
    FAILED = 'failed'
    UNKNOWN = 'unknown'

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


ALLOWED_TRANSITIONS: Dict[MigrationStatus, frozenset] = {
    MigrationStatus.PENDING: frozenset({MigrationStatus.IN_PROGRESS}),
    MigrationStatus.IN_PROGRESS: frozenset(
        {MigrationStatus.COMPLETED, MigrationStatus.FAILED, MigrationStatus.PENDING}
    ),
    MigrationStatus.COMPLETED: frozenset(
        {MigrationStatus.IN_PROGRESS, MigrationStatus.PENDING}
    ),
    MigrationStatus.FAILED: frozenset(
        {MigrationStatus.IN_PROGRESS, MigrationStatus.PENDING}
    ),
}


def can_transition(current: MigrationStatus, target: MigrationStatus) -> bool:
    """Return True if ``current -> target`` is a legal migration status move."""
    return target in ALLOWED_TRANSITIONS[current]


VALID_PERMISSIONS = ('pull', 'triage', 'push', 'maintain', 'admin')

_PERMISSION_ALIASES = {
    'read': 'pull',
    'write': 'push',
}


def normalize_permission(permission: str) -> str:
    """Normalize a source permission name to a GitHub team permission.

    Raises:
        ValueError: If the permission cannot be mapped
    """
    value = (permission or '').strip().lower()
    value = _PERMISSION_ALIASES.get(value, value)
    if value not in VALID_PERMISSIONS:
        raise ValueError(
            f'Invalid permission {permission!r}, must be one of: '
            f'{", ".join(VALID_PERMISSIONS)}'
        )
    return value


class TeamRepository(BaseModel):
    """A repository a source team has access to."""

    source_full_name: str = Field(..., description='Source owner/name')
    destination_full_name: Optional[str] = Field(
        default=None, description='Destination owner/name once the repository is migrated'
    )
    permission: str = Field(default='pull', description='Team permission level')
    synced_at: Optional[datetime] = Field(
        default=None, description='When the permission was last applied'
    )

    @validator('permission')
    def validate_permission(cls, v):
        """Normalize permission names."""
        return normalize_permission(v)

    @validator('destination_full_name')
    def validate_destination(cls, v):
        """Require owner/name form for destination repositories."""
        if v is None or v == '':
            return None
        parts = v.split('/')
        if len(parts) != 2 or not all(parts):
            raise ValueError(f'Invalid destination full name: {v}')
        return v

    @property
    def is_eligible(self) -> bool:
        return self.destination_full_name is not None

    @property
    def is_synced(self) -> bool:
        return self.synced_at is not None


# Fields written by a migration run; everything else belongs to the user.
MIGRATION_STATE_FIELDS = (
    'migration_status',
    'team_created_in_dest',
    'total_source_repos',
    'repos_eligible',
    'repos_synced',
    'repos_failed',
    'error_message',
    'last_synced_at',
    'migrated_at',
    'updated_at',
)


class TeamMapping(BaseModel):
    """Persisted source -> destination team correspondence and migration state."""

    source_org: str = Field(..., description='Source organization')
    source_slug: str = Field(..., description='Source team slug')
    source_team_name: Optional[str] = Field(default=None, description='Source team name')

    destination_org: Optional[str] = Field(default=None, description='Destination org')
    destination_slug: Optional[str] = Field(
        default=None, description='Destination team slug'
    )
    destination_team_name: Optional[str] = Field(
        default=None, description='Destination team name'
    )

    mapping_status: MappingStatus = Field(default=MappingStatus.UNMAPPED)
    migration_status: MigrationStatus = Field(default=MigrationStatus.PENDING)

    team_created_in_dest: bool = Field(default=False)
    total_source_repos: int = Field(default=0, ge=0)
    repos_eligible: int = Field(default=0, ge=0)
    repos_synced: int = Field(default=0, ge=0)
    repos_failed: int = Field(default=0, ge=0)

    error_message: Optional[str] = Field(default=None)
    last_synced_at: Optional[datetime] = Field(default=None)
    migrated_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    class Config:
        """Pydantic configuration."""

        validate_assignment = True

    @property
    def key(self) -> tuple:
        return (self.source_org, self.source_slug)

    @property
    def source_full_slug(self) -> str:
        return f'{self.source_org}/{self.source_slug}'

    @property
    def destination_full_slug(self) -> Optional[str]:
        if not self.destination_org or not self.destination_slug:
            return None
        return f'{self.destination_org}/{self.destination_slug}'

    @property
    def sync_status(self) -> SyncStatus:
        """Completeness derived from status and counters.

        This is the only place completeness is computed; it is never stored.
        """
        if self.migration_status == MigrationStatus.FAILED:
            return SyncStatus.FAILED
        if not self.team_created_in_dest:
            return SyncStatus.PENDING
        if self.repos_eligible == 0:
            return SyncStatus.TEAM_ONLY
        if self.repos_synced >= self.repos_eligible:
            return SyncStatus.COMPLETE
        if (
            self.migration_status == MigrationStatus.PENDING
            or self.repos_synced == 0
        ):
            return SyncStatus.NEEDS_SYNC
        return SyncStatus.PARTIAL

    @property
    def migration_completeness(self) -> SyncStatus:
        return self.sync_status

    def to_response(self) -> dict:
        """Serialize for API consumers, including derived fields."""
        data = self.dict()
        data['source_full_slug'] = self.source_full_slug
        data['sync_status'] = self.sync_status.value
        data['migration_completeness'] = self.sync_status.value
        return data


class MappingFilter(BaseModel):
    """Query filter for mapping lists."""

    status: Optional[MappingStatus] = None
    source_org: Optional[str] = None
    search: Optional[str] = None

    def matches(self, mapping: TeamMapping) -> bool:
        if self.status is not None and mapping.mapping_status != self.status:
            return False
        if self.source_org and mapping.source_org != self.source_org:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [
                mapping.source_org,
                mapping.source_slug,
                mapping.source_team_name or '',
                mapping.destination_org or '',
                mapping.destination_slug or '',
                mapping.destination_team_name or '',
            ]
            if not any(needle in value.lower() for value in haystack):
                return False
        return True


class MappingUpdate(BaseModel):
    """Manual edit of a mapping's assignment."""

    destination_org: Optional[str] = None
    destination_team_slug: Optional[str] = None
    destination_team_name: Optional[str] = None
    mapping_status: Optional[MappingStatus] = None

    def apply(self, mapping: TeamMapping) -> TeamMapping:
        """Return a copy of ``mapping`` with this edit applied."""
        updated = mapping.copy()
        if self.destination_org is not None:
            updated.destination_org = self.destination_org or None
        if self.destination_team_slug is not None:
            updated.destination_slug = self.destination_team_slug or None
        if self.destination_team_name is not None:
            updated.destination_team_name = self.destination_team_name or None

        if self.mapping_status is not None:
            updated.mapping_status = self.mapping_status
        elif updated.destination_org and updated.destination_slug:
            if updated.mapping_status == MappingStatus.UNMAPPED:
                updated.mapping_status = MappingStatus.MAPPED

        if updated.mapping_status == MappingStatus.MAPPED and not (
            updated.destination_org and updated.destination_slug
        ):
            raise ValueError('A mapped team needs destination_org and destination_team_slug')

        updated.updated_at = datetime.now()
        return updated


def summarize_repositories(repositories: List[TeamRepository]) -> Dict[str, int]:
    """Count total, eligible and synced repositories for a team."""
    eligible = [r for r in repositories if r.is_eligible]
    return {
        'total': len(repositories),
        'eligible': len(eligible),
        'synced': sum(1 for r in eligible if r.is_synced),
    }
