"""Migration orchestrator errors."""

from typing import Optional


class MigrationError(Exception):
    """Base class for orchestrator errors surfaced to callers."""

    pass


class AlreadyRunning(MigrationError):
    """A migration run is already in progress."""

    def __init__(self, run_id: Optional[str] = None):
        super().__init__('Team migration is already running')
        self.run_id = run_id


class NotMapped(MigrationError):
    """A single-team run targeted a team whose mapping is not ``mapped``."""

    def __init__(self, source_full_slug: str, mapping_status: str):
        super().__init__(
            f'Team {source_full_slug} is not mapped (mapping_status={mapping_status})'
        )
        self.source_full_slug = source_full_slug
        self.mapping_status = mapping_status


class NotFound(MigrationError):
    """Referenced mapping does not exist."""

    pass


class InvalidTransition(MigrationError):
    """Illegal migration_status change."""

    def __init__(self, source_full_slug: str, current: str, target: str):
        super().__init__(
            f'Cannot move {source_full_slug} from {current} to {target}'
        )


class DestinationError(MigrationError):
    """A destination call failed for one team or repository."""

    pass


class DestinationLookupFailed(DestinationError):
    pass


class DestinationCreateFailed(DestinationError):
    pass


class DestinationPermissionFailed(DestinationError):
    def __init__(self, repo_full_name: str, message: str):
        super().__init__(f'{repo_full_name}: {message}')
        self.repo_full_name = repo_full_name
