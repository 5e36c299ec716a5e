"""Per-team migration state machine."""

import asyncio
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field
from loguru import logger

from ..connectors.base import DestinationConnector
from ..models.mapping import (
    MIGRATION_STATE_FIELDS,
    MigrationStatus,
    SyncStatus,
    TeamMapping,
    TeamRepository,
    can_transition,
)
from ..store.base import MappingStore, StoreError
from .errors import (
    DestinationCreateFailed,
    DestinationLookupFailed,
    DestinationPermissionFailed,
    InvalidTransition,
)


class TeamAction(str, Enum):
    """What happened to the destination team."""

    CREATED = 'created'
    EXISTING = 'existing'
    FAILED = 'failed'


class MigrationResult(BaseModel):
    """Result of migrating one team mapping."""

    source_full_slug: str = Field(..., description='Source org/slug')
    destination_full_slug: Optional[str] = Field(
        default=None, description='Destination org/slug'
    )
    team_action: TeamAction = Field(..., description='Destination team outcome')
    migration_status: MigrationStatus = Field(..., description='Final migration status')
    sync_status: SyncStatus = Field(..., description='Derived completeness')

    repos_eligible: int = Field(default=0, description='Repositories to grant')
    repos_synced: int = Field(default=0, description='Repositories granted')
    repos_failed: int = Field(default=0, description='Repositories that failed')

    started_at: datetime = Field(..., description='Migration start time')
    completed_at: Optional[datetime] = Field(default=None)
    dry_run: bool = Field(default=False)

    error_message: Optional[str] = Field(default=None)
    errors: List[str] = Field(
        default_factory=list, description='Run-level error lines for this team'
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @property
    def success(self) -> bool:
        return self.team_action != TeamAction.FAILED


class MigrationContext(BaseModel):
    """Context shared by every worker of a run."""

    store: MappingStore = Field(..., description='Mapping store')
    destination: DestinationConnector = Field(..., description='Destination connector')

    dry_run: bool = Field(default=False, description='Perform dry run without changes')
    team_privacy: str = Field(default='closed', description='Privacy of created teams')

    class Config:
        """Pydantic configuration."""

        arbitrary_types_allowed = True


class TeamMigrationStrategy:
    """Drive one team mapping through team_check, team_create, repo sync and
    classification.

    Destination failures are recorded on the mapping and never raised.
    ``StoreError`` is raised: the system of record being unavailable is fatal
    to the whole run. In dry run nothing is written to the store or to the
    destination.
    """

    def __init__(self, context: MigrationContext):
        self.context = context
        self.logger = logger.bind(strategy=self.__class__.__name__)

    @property
    def store(self) -> MappingStore:
        return self.context.store

    @property
    def destination(self) -> DestinationConnector:
        return self.context.destination

    async def migrate_entity(self, mapping: TeamMapping) -> MigrationResult:
        """Migrate a single team mapping.

        Args:
            mapping: Snapshot of a ``mapped`` row taken at run start

        Returns:
            Migration result

        Raises:
            StoreError: If the mapping store cannot be written
        """
        started_at = datetime.now()
        working = mapping.copy(deep=True)
        slug = working.source_full_slug

        try:
            self._transition(working, MigrationStatus.IN_PROGRESS)
        except InvalidTransition as e:
            return await self._fail(working, started_at, str(e))
        working.error_message = None

        if not working.destination_full_slug:
            return await self._fail(
                working, started_at, 'destination org or team slug is not set'
            )
        await self._save(working)

        prefix = 'Dry run: ' if self.context.dry_run else ''
        self.logger.info(
            f'{prefix}Migrating team {slug} -> {working.destination_full_slug}'
        )

        # team_check
        try:
            team = await self.destination.get_team(
                working.destination_org, working.destination_slug
            )
        except StoreError:
            raise
        except Exception as e:
            error = DestinationLookupFailed(
                f'Failed to look up team {working.destination_full_slug}: {e}'
            )
            return await self._fail(working, started_at, str(error))

        # team_create
        created_now = False
        if team is None:
            requested_slug = working.destination_slug
            try:
                await self._create_team(working)
            except StoreError:
                raise
            except Exception as e:
                error = DestinationCreateFailed(
                    f'Failed to create team {working.destination_full_slug}: {e}'
                )
                return await self._fail(working, started_at, str(error))
            created_now = True
            working.team_created_in_dest = True
            adopted = {}
            if working.destination_slug != requested_slug:
                adopted['destination_slug'] = working.destination_slug
            await self._save(working, **adopted)
        else:
            self.logger.debug(f'Team {working.destination_full_slug} already exists')
            working.team_created_in_dest = True

        # repo_sync_loop
        repositories = await asyncio.to_thread(
            self.store.list_team_repositories, *working.key
        )
        eligible = [repo for repo in repositories if repo.is_eligible]
        working.total_source_repos = len(repositories)
        working.repos_eligible = len(eligible)

        synced, failed, errors = await self._sync_repositories(
            working, eligible, created_now
        )

        # classification
        now = datetime.now()
        working.repos_synced = synced
        working.repos_failed = len(failed)
        working.migrated_at = now
        if synced:
            working.last_synced_at = now
        working.error_message = str(failed[-1]) if failed else None
        self._transition(working, MigrationStatus.COMPLETED)
        await self._save(working)

        result = MigrationResult(
            source_full_slug=slug,
            destination_full_slug=working.destination_full_slug,
            team_action=TeamAction.CREATED if created_now else TeamAction.EXISTING,
            migration_status=working.migration_status,
            sync_status=working.sync_status,
            repos_eligible=working.repos_eligible,
            repos_synced=synced,
            repos_failed=len(failed),
            started_at=started_at,
            completed_at=now,
            dry_run=self.context.dry_run,
            error_message=working.error_message,
            errors=errors,
        )
        self.logger.info(
            f'{prefix}Team {slug}: {result.sync_status.value} '
            f'({synced}/{working.repos_eligible} repositories)'
        )
        return result

    async def _create_team(self, working: TeamMapping) -> None:
        name = (
            working.destination_team_name
            or working.source_team_name
            or working.destination_slug
        )
        if self.context.dry_run:
            self.logger.info(
                f'Dry run: would create team {working.destination_full_slug} '
                f'({name}, {self.context.team_privacy})'
            )
            return

        team = await self.destination.create_team(
            working.destination_org,
            working.destination_slug,
            name,
            privacy=self.context.team_privacy,
        )
        if team.slug != working.destination_slug:
            working.destination_slug = team.slug
        self.logger.info(f'Created team {working.destination_full_slug}')

    async def _sync_repositories(
        self,
        working: TeamMapping,
        eligible: List[TeamRepository],
        created_now: bool,
    ):
        """Grant the team its permission on each eligible repository.

        Repositories synced by an earlier run are counted without another
        call, unless the team was just (re)created.

        Returns:
            (synced count, list of permission failures, run error lines)
        """
        synced = 0
        granted: List[str] = []
        failed: List[DestinationPermissionFailed] = []
        errors: List[str] = []

        for repo in eligible:
            if repo.is_synced and not created_now:
                synced += 1
                continue

            if self.context.dry_run:
                self.logger.info(
                    f'Dry run: would grant {repo.permission} on '
                    f'{repo.destination_full_name} to {working.destination_full_slug}'
                )
                synced += 1
                continue

            try:
                await self.destination.set_repo_permission(
                    working.destination_org,
                    working.destination_slug,
                    repo.destination_full_name,
                    repo.permission,
                )
            except StoreError:
                raise
            except Exception as e:
                error = DestinationPermissionFailed(repo.destination_full_name, str(e))
                failed.append(error)
                errors.append(f'{working.source_full_slug}: {error}')
                self.logger.warning(
                    f'Failed to grant {repo.permission} on '
                    f'{repo.destination_full_name}: {e}'
                )
                continue

            granted.append(repo.source_full_name)
            synced += 1
            self.logger.debug(
                f'Granted {repo.permission} on {repo.destination_full_name} '
                f'to {working.destination_full_slug}'
            )

        if granted:
            await asyncio.to_thread(
                self.store.mark_repositories_synced, *working.key, granted
            )
        return synced, failed, errors

    async def _fail(
        self,
        working: TeamMapping,
        started_at: datetime,
        message: str,
    ) -> MigrationResult:
        """Record a team-level failure."""
        self.logger.error(f'Team {working.source_full_slug} failed: {message}')
        if can_transition(
            working.migration_status, MigrationStatus.FAILED
        ):
            working.migration_status = MigrationStatus.FAILED
        working.error_message = message
        await self._save(working)

        return MigrationResult(
            source_full_slug=working.source_full_slug,
            destination_full_slug=working.destination_full_slug,
            team_action=TeamAction.FAILED,
            migration_status=working.migration_status,
            sync_status=working.sync_status,
            repos_eligible=working.repos_eligible,
            repos_synced=working.repos_synced,
            repos_failed=working.repos_failed,
            started_at=started_at,
            completed_at=datetime.now(),
            dry_run=self.context.dry_run,
            error_message=message,
            errors=[f'{working.source_full_slug}: {message}'],
        )

    def _transition(self, working: TeamMapping, target: MigrationStatus) -> None:
        if not can_transition(working.migration_status, target):
            raise InvalidTransition(
                working.source_full_slug, working.migration_status.value, target.value
            )
        working.migration_status = target

    async def _save(self, working: TeamMapping, **adopted) -> None:
        """Persist the run-owned fields of ``working``.

        The user may edit or delete the row while the team is migrating;
        only migration state is written back.
        """
        if self.context.dry_run:
            return
        working.updated_at = datetime.now()
        fields = {name: getattr(working, name) for name in MIGRATION_STATE_FIELDS}
        fields.update(adopted)
        updated = await asyncio.to_thread(
            self.store.update_migration_state, *working.key, **fields
        )
        if updated is None:
            self.logger.warning(
                f'Team mapping {working.source_full_slug} was deleted during '
                f'the run, state not saved'
            )
