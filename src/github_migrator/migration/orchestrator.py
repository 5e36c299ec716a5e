"""Migration orchestrator for coordinating team migrations."""

import asyncio
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from ..connectors.base import DestinationConnector
from ..models.mapping import MappingFilter, MappingStatus, MigrationStatus, TeamMapping
from ..models.run import MigrationRun, RunHandle, RunScope
from ..store.base import MappingNotFoundError, MappingStore, StoreError
from .errors import AlreadyRunning, NotFound, NotMapped
from .progress import ProgressTracker
from .strategy import MigrationContext, MigrationResult, TeamAction, TeamMigrationStrategy

INTERRUPTED_MESSAGE = 'Migration was interrupted before it completed'


class MigrationOrchestrator:
    """Runs team migrations with a fixed-size worker pool.

    At most one run exists per process. The set of teams is snapshotted when
    the run starts; workers pull from a queue and check the stop flag between
    teams, so cancellation never interrupts a team mid-flight.
    """

    def __init__(
        self,
        store: MappingStore,
        destination: DestinationConnector,
        workers: int = 5,
        team_privacy: str = 'closed',
        error_display_limit: int = 5,
    ):
        """Initialize migration orchestrator.

        Args:
            store: Mapping store (system of record)
            destination: Destination team connector
            workers: Number of teams processed concurrently
            team_privacy: Privacy of teams created in the destination
            error_display_limit: Errors shown before "+N more"
        """
        if workers < 1:
            raise ValueError('workers must be positive')
        self.store = store
        self.destination = destination
        self.workers = workers
        self.team_privacy = team_privacy
        self.progress = ProgressTracker(error_display_limit)
        self.logger = logger.bind(component='MigrationOrchestrator')

        self._stop = threading.Event()
        self._claim_lock = threading.Lock()
        self._fatal = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.progress.is_running

    async def execute_migration(
        self, scope: Optional[RunScope] = None, dry_run: bool = False
    ) -> RunHandle:
        """Start a run in the background.

        Args:
            scope: Which mapped teams to migrate, all of them by default
            dry_run: Log what would change without writing anything

        Returns:
            Handle to observe or await the run

        Raises:
            AlreadyRunning: If a run is already in progress
            NotFound: If a single-team scope names an unknown mapping
            NotMapped: If a single-team scope names a mapping that is not mapped
            StoreError: If the store cannot be read at run start
        """
        scope = scope or RunScope()
        with self._claim_lock:
            run_id = self.progress.start(scope, dry_run)
            if run_id is not None:
                self._stop.clear()
                self._fatal = False
        if run_id is None:
            raise AlreadyRunning(self.progress.run_id)

        try:
            mappings = self._load_work(scope)
        except (NotFound, NotMapped):
            self.progress.abandon()
            raise
        except StoreError as e:
            self.logger.error(f'Cannot load team mappings: {e}')
            self.progress.add_error(f'Mapping store unavailable: {e}')
            self.progress.finish(fatal=True)
            raise

        self.progress.set_total(len(mappings))

        mode = 'dry run' if dry_run else 'migration'
        self.logger.info(
            f'Starting {mode} {run_id} for {scope.describe()}: '
            f'{len(mappings)} teams, {self.workers} workers'
        )

        self._task = asyncio.create_task(self._run(mappings, dry_run))
        return RunHandle(run_id, self._task, self.progress.snapshot)

    def _load_work(self, scope: RunScope) -> List[TeamMapping]:
        if scope.is_single_entity:
            try:
                mapping = self.store.get_mapping(scope.source_org, scope.source_slug)
            except MappingNotFoundError as e:
                raise NotFound(str(e))
            if mapping.mapping_status != MappingStatus.MAPPED:
                raise NotMapped(mapping.source_full_slug, mapping.mapping_status.value)
            return [mapping]

        mappings, _ = self.store.query_mappings(
            MappingFilter(status=MappingStatus.MAPPED, source_org=scope.source_org)
        )
        return mappings

    async def _run(self, mappings: List[TeamMapping], dry_run: bool) -> MigrationRun:
        queue: asyncio.Queue = asyncio.Queue()
        for mapping in mappings:
            queue.put_nowait(mapping)

        strategy = TeamMigrationStrategy(
            MigrationContext(
                store=self.store,
                destination=self.destination,
                dry_run=dry_run,
                team_privacy=self.team_privacy,
            )
        )

        worker_count = max(1, min(self.workers, len(mappings)))
        workers = [
            asyncio.create_task(self._worker(queue, strategy))
            for _ in range(worker_count)
        ]
        try:
            results = await asyncio.gather(*workers, return_exceptions=True)
        except asyncio.CancelledError:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self.progress.finish(cancelled=True)
            raise

        for result in results:
            if isinstance(result, Exception):
                self._fatal = True
                self.logger.error(f'Migration worker crashed: {result}')
                self.progress.add_error(f'Worker error: {result}')

        cancelled = self._stop.is_set() and not self._fatal
        summary = self.progress.finish(cancelled=cancelled, fatal=self._fatal)
        self.logger.info(
            f'Run {summary.run_id} {summary.status.value}: '
            f'{summary.processed_teams}/{summary.total_teams} teams, '
            f'{summary.created_teams} created, {summary.skipped_teams} existing, '
            f'{summary.failed_teams} failed, '
            f'{summary.total_repos_synced} repositories synced'
        )
        return summary

    async def _worker(
        self, queue: asyncio.Queue, strategy: TeamMigrationStrategy
    ) -> None:
        while not (self._stop.is_set() or self._fatal):
            try:
                mapping = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            self.progress.set_current(mapping.source_full_slug)
            try:
                result = await strategy.migrate_entity(mapping)
            except StoreError as e:
                self._fatal = True
                self.logger.error(
                    f'Mapping store failure while migrating '
                    f'{mapping.source_full_slug}: {e}'
                )
                self.progress.record_team(failed=True)
                self.progress.add_error(
                    f'{mapping.source_full_slug}: mapping store failure: {e}'
                )
                return
            self._record(result)

    def _record(self, result: MigrationResult) -> None:
        self.progress.record_team(
            created=result.team_action == TeamAction.CREATED,
            skipped=result.team_action == TeamAction.EXISTING,
            failed=result.team_action == TeamAction.FAILED,
            repos_synced=result.repos_synced,
        )
        for error in result.errors:
            self.progress.add_error(error)

    def cancel_migration(self) -> bool:
        """Ask the current run to stop after the teams in flight.

        Returns:
            True if a run was signalled, False if nothing was running
        """
        with self._claim_lock:
            if not self.progress.is_running:
                return False
            if not self._stop.is_set():
                self.logger.info('Cancellation requested, finishing teams in flight')
            self._stop.set()
        return True

    async def wait_for_completion(self) -> MigrationRun:
        """Wait for the current run (if any) and return the latest snapshot."""
        if self._task is not None:
            await asyncio.gather(asyncio.shield(self._task), return_exceptions=True)
        return self.progress.snapshot()

    def reset_migration_status(self, scope: Optional[RunScope] = None) -> int:
        """Put mappings in scope back to ``pending`` for a re-run.

        Destination state is kept, so the next run re-syncs rather than
        recreates.

        Returns:
            Number of mappings reset

        Raises:
            AlreadyRunning: If a run is in progress
        """
        if self.progress.is_running:
            raise AlreadyRunning(self.progress.run_id)

        scope = scope or RunScope()
        if not scope.is_single_entity:
            count = self.store.reset_migration_status(scope.source_org)
        else:
            try:
                mapping = self.store.get_mapping(scope.source_org, scope.source_slug)
            except MappingNotFoundError as e:
                raise NotFound(str(e))
            count = 0
            if mapping.migration_status != MigrationStatus.PENDING:
                mapping.migration_status = MigrationStatus.PENDING
                mapping.updated_at = datetime.now()
                self.store.upsert_mapping(mapping)
                count = 1

        self.logger.info(f'Reset migration status of {count} teams ({scope.describe()})')
        return count

    def recover_stale(self) -> int:
        """Settle rows left ``in_progress`` by a process that died mid-run.

        Rows with no destination state go back to ``pending``; rows whose
        team was already created become ``failed`` so the partial state is
        visible.

        Returns:
            Number of rows recovered
        """
        if self.progress.is_running:
            return 0

        recovered = 0
        mappings, _ = self.store.query_mappings()
        for mapping in mappings:
            if mapping.migration_status != MigrationStatus.IN_PROGRESS:
                continue
            if mapping.team_created_in_dest or mapping.repos_synced:
                mapping.migration_status = MigrationStatus.FAILED
                mapping.error_message = INTERRUPTED_MESSAGE
            else:
                mapping.migration_status = MigrationStatus.PENDING
            mapping.updated_at = datetime.now()
            self.store.upsert_mapping(mapping)
            recovered += 1
            self.logger.warning(
                f'Recovered interrupted team {mapping.source_full_slug} '
                f'as {mapping.migration_status.value}'
            )
        return recovered

    def clear_run(self) -> None:
        """Reset the run snapshot to ``not_started``.

        Raises:
            AlreadyRunning: If a run is in progress
        """
        if not self.progress.clear():
            raise AlreadyRunning(self.progress.run_id)

    def get_status(self, source_org: Optional[str] = None) -> Dict[str, Any]:
        """Run progress together with store-wide statistics."""
        snapshot = self.progress.snapshot()
        return {
            'is_running': snapshot.is_running,
            'progress': snapshot,
            'execution_stats': self.store.execution_stats(),
            'mapping_stats': self.store.mapping_stats(source_org),
        }
