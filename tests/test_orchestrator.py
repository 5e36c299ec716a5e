"""Tests for the migration orchestrator and per-team state machine."""

import asyncio

import pytest

from conftest import FakeDestinationConnector, add_mapping
from github_migrator.migration.errors import AlreadyRunning, NotFound, NotMapped
from github_migrator.migration.orchestrator import (
    INTERRUPTED_MESSAGE,
    MigrationOrchestrator,
)
from github_migrator.models.mapping import MappingStatus, MigrationStatus, SyncStatus
from github_migrator.models.run import RunScope, RunStatus
from github_migrator.models.team import Team
from github_migrator.store.base import StoreError
from github_migrator.store.memory import InMemoryMappingStore


async def run_to_completion(orchestrator, scope=None, dry_run=False):
    handle = await orchestrator.execute_migration(scope, dry_run=dry_run)
    return await handle.wait()


class TestRunOutcomes:
    """End-to-end runs against in-memory collaborators."""

    async def test_one_create_failure_in_ten_teams(self, store, destination):
        """A failed team is recorded and the run continues with the rest."""
        for i in range(10):
            add_mapping(store, slug=f'team-{i}', eligible=2)
        destination.fail_create.add('team-3')
        orchestrator = MigrationOrchestrator(store, destination, workers=4)

        run = await run_to_completion(orchestrator)

        assert run.status == RunStatus.COMPLETED_WITH_ERRORS
        assert run.total_teams == 10
        assert run.processed_teams == 10
        assert run.created_teams == 9
        assert run.failed_teams == 1
        assert run.total_repos_synced == 18
        assert len(run.errors) == 1
        assert run.errors[0].startswith('src/team-3: ')

        failed = store.get_mapping('src', 'team-3')
        assert failed.migration_status == MigrationStatus.FAILED
        assert failed.sync_status == SyncStatus.FAILED
        assert 'name taken' in failed.error_message

        done = store.get_mapping('src', 'team-4')
        assert done.migration_status == MigrationStatus.COMPLETED
        assert done.sync_status == SyncStatus.COMPLETE
        assert done.team_created_in_dest is True
        assert done.repos_synced == 2

    async def test_partial_repository_failures(self, store, destination):
        """Repository failures leave the team completed but partial."""
        add_mapping(store, slug='platform', eligible=5)
        destination.fail_repos.update({'dest/platform-repo-1', 'dest/platform-repo-3'})
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        mapping = store.get_mapping('src', 'platform')
        assert mapping.migration_status == MigrationStatus.COMPLETED
        assert mapping.sync_status == SyncStatus.PARTIAL
        assert mapping.repos_eligible == 5
        assert mapping.repos_synced == 3
        assert mapping.repos_failed == 2
        assert mapping.error_message is not None
        assert mapping.last_synced_at is not None

        assert run.created_teams == 1
        assert run.failed_teams == 0
        assert run.total_repos_synced == 3
        assert len(run.errors) == 2
        assert run.status == RunStatus.COMPLETED_WITH_ERRORS

    async def test_team_without_eligible_repositories(self, store, destination):
        add_mapping(store, slug='design', ineligible=2)
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        mapping = store.get_mapping('src', 'design')
        assert run.status == RunStatus.COMPLETED
        assert mapping.sync_status == SyncStatus.TEAM_ONLY
        assert mapping.total_source_repos == 2
        assert mapping.repos_eligible == 0
        assert destination.grants == []

    async def test_existing_team_is_counted_as_skipped(self, store, destination):
        add_mapping(store, slug='ops', eligible=1)
        destination.teams[('dest', 'ops')] = Team(org='dest', slug='ops', name='Ops')
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        assert run.skipped_teams == 1
        assert run.created_teams == 0
        assert destination.created == []
        assert store.get_mapping('src', 'ops').sync_status == SyncStatus.COMPLETE

    async def test_lookup_failure_fails_team(self, store, destination):
        add_mapping(store, slug='ops', eligible=1)
        destination.fail_lookup.add('ops')
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        mapping = store.get_mapping('src', 'ops')
        assert run.failed_teams == 1
        assert mapping.migration_status == MigrationStatus.FAILED
        assert 'look up' in mapping.error_message

    async def test_missing_destination_fails_team(self, store, destination):
        add_mapping(store, slug='ops', destination_org=None)
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        assert run.failed_teams == 1
        mapping = store.get_mapping('src', 'ops')
        assert mapping.migration_status == MigrationStatus.FAILED
        assert 'destination' in mapping.error_message

    async def test_team_name_and_privacy(self, store, destination):
        add_mapping(store, slug='ops', destination_team_name='Operations')
        orchestrator = MigrationOrchestrator(store, destination, team_privacy='secret')

        await run_to_completion(orchestrator)

        assert destination.created == [('dest', 'ops', 'Operations', 'secret')]

    async def test_only_mapped_rows_are_executed(self, store, destination):
        add_mapping(store, slug='mapped', eligible=1)
        add_mapping(store, slug='unmapped', mapping_status=MappingStatus.UNMAPPED)
        add_mapping(store, slug='skipped', mapping_status=MappingStatus.SKIPPED)
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        assert run.total_teams == 1
        assert store.get_mapping('src', 'unmapped').migration_status == MigrationStatus.PENDING
        assert store.get_mapping('src', 'skipped').migration_status == MigrationStatus.PENDING

    async def test_source_org_scope(self, store, destination):
        add_mapping(store, org='alpha', slug='one')
        add_mapping(store, org='beta', slug='two')
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator, RunScope(source_org='alpha'))

        assert run.total_teams == 1
        assert store.get_mapping('beta', 'two').migration_status == MigrationStatus.PENDING

    async def test_empty_run_completes(self, store, destination):
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator)

        assert run.status == RunStatus.COMPLETED
        assert run.total_teams == 0
        assert run.processed_teams == 0


class TestResync:
    """Reset and re-run only fills the gap."""

    async def test_reset_then_rerun_syncs_remaining_repositories(self, store, destination):
        add_mapping(store, slug='platform', eligible=5)
        destination.fail_repos.update({'dest/platform-repo-1', 'dest/platform-repo-3'})
        orchestrator = MigrationOrchestrator(store, destination)
        await run_to_completion(orchestrator)
        assert len(destination.grants) == 3

        destination.fail_repos.clear()
        assert orchestrator.reset_migration_status() == 1
        mapping = store.get_mapping('src', 'platform')
        assert mapping.migration_status == MigrationStatus.PENDING
        assert mapping.team_created_in_dest is True
        assert mapping.sync_status == SyncStatus.NEEDS_SYNC

        run = await run_to_completion(orchestrator)

        assert len(destination.grants) == 5
        assert {grant[2] for grant in destination.grants[3:]} == {
            'dest/platform-repo-1',
            'dest/platform-repo-3',
        }
        mapping = store.get_mapping('src', 'platform')
        assert mapping.repos_synced == 5
        assert mapping.repos_failed == 0
        assert mapping.error_message is None
        assert mapping.sync_status == SyncStatus.COMPLETE
        assert run.skipped_teams == 1
        assert run.total_repos_synced == 5
        assert run.status == RunStatus.COMPLETED

    async def test_team_only_rerun_with_new_eligible_repositories(self, store, destination):
        """An existing team is found again and only the new repositories are granted."""
        add_mapping(store, slug='design', ineligible=2)
        orchestrator = MigrationOrchestrator(store, destination)
        await run_to_completion(orchestrator)
        assert store.get_mapping('src', 'design').sync_status == SyncStatus.TEAM_ONLY
        assert len(destination.created) == 1

        store.set_repository_destination('src/design-legacy-0', 'dest/design-legacy-0')
        store.set_repository_destination('src/design-legacy-1', 'dest/design-legacy-1')
        destination.fail_repos.add('dest/design-legacy-1')
        assert orchestrator.reset_migration_status() == 1

        run = await run_to_completion(orchestrator)

        assert len(destination.created) == 1
        assert run.created_teams == 0
        assert run.skipped_teams == 1
        assert destination.grants == [('dest', 'design', 'dest/design-legacy-0', 'pull')]
        mapping = store.get_mapping('src', 'design')
        assert mapping.repos_eligible == 2
        assert mapping.repos_synced == 1
        assert mapping.sync_status == SyncStatus.PARTIAL

        destination.fail_repos.clear()
        await run_to_completion(orchestrator)

        assert len(destination.created) == 1
        assert store.get_mapping('src', 'design').sync_status == SyncStatus.COMPLETE

    async def test_completed_team_can_rerun_without_reset(self, store, destination):
        add_mapping(store, slug='ops', eligible=2)
        orchestrator = MigrationOrchestrator(store, destination)
        await run_to_completion(orchestrator)

        await run_to_completion(orchestrator)

        assert len(destination.grants) == 2
        assert store.get_mapping('src', 'ops').sync_status == SyncStatus.COMPLETE

    async def test_reset_single_team(self, store, destination):
        add_mapping(store, slug='one')
        add_mapping(store, slug='two')
        orchestrator = MigrationOrchestrator(store, destination)
        await run_to_completion(orchestrator)

        count = orchestrator.reset_migration_status(
            RunScope(source_org='src', source_slug='one')
        )

        assert count == 1
        assert store.get_mapping('src', 'one').migration_status == MigrationStatus.PENDING
        assert store.get_mapping('src', 'two').migration_status == MigrationStatus.COMPLETED

    def test_reset_unknown_team(self, store, destination):
        orchestrator = MigrationOrchestrator(store, destination)

        with pytest.raises(NotFound):
            orchestrator.reset_migration_status(
                RunScope(source_org='src', source_slug='missing')
            )


class TestDryRun:
    """Dry runs report without writing."""

    async def test_dry_run_writes_nothing(self, store, destination):
        add_mapping(store, slug='ops', eligible=3)
        before = store.get_mapping('src', 'ops')
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(orchestrator, dry_run=True)

        assert run.dry_run is True
        assert run.status == RunStatus.COMPLETED
        assert run.created_teams == 1
        assert run.total_repos_synced == 3
        assert destination.created == []
        assert destination.grants == []
        assert store.get_mapping('src', 'ops') == before
        assert all(r.synced_at is None for r in store.list_team_repositories('src', 'ops'))


class TestSingleEntity:
    """Single-team runs validate their target."""

    async def test_single_team_run(self, store, destination):
        add_mapping(store, slug='one', eligible=1)
        add_mapping(store, slug='two', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination)

        run = await run_to_completion(
            orchestrator, RunScope(source_org='src', source_slug='two')
        )

        assert run.total_teams == 1
        assert store.get_mapping('src', 'one').migration_status == MigrationStatus.PENDING
        assert store.get_mapping('src', 'two').migration_status == MigrationStatus.COMPLETED

    async def test_unknown_team(self, store, destination):
        orchestrator = MigrationOrchestrator(store, destination)

        with pytest.raises(NotFound):
            await orchestrator.execute_migration(RunScope(source_org='src', source_slug='x'))

        assert orchestrator.progress.snapshot().status == RunStatus.NOT_STARTED
        assert orchestrator.is_running is False

    async def test_unmapped_team(self, store, destination):
        add_mapping(store, slug='todo', mapping_status=MappingStatus.UNMAPPED)
        orchestrator = MigrationOrchestrator(store, destination)

        with pytest.raises(NotMapped):
            await orchestrator.execute_migration(
                RunScope(source_org='src', source_slug='todo')
            )

        assert orchestrator.is_running is False


class TestConcurrency:
    """Worker pool, single-flight guard and cancellation."""

    async def test_worker_pool_bounds_concurrency(self, store):
        destination = FakeDestinationConnector(delay=0.01)
        for i in range(10):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination, workers=3)

        run = await run_to_completion(orchestrator)

        assert run.processed_teams == 10
        assert 1 < destination.max_active <= 3

    async def test_second_run_is_rejected(self, store):
        destination = FakeDestinationConnector(delay=0.02)
        for i in range(3):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination, workers=1)

        handle = await orchestrator.execute_migration()
        before = handle.progress()
        with pytest.raises(AlreadyRunning) as exc_info:
            await orchestrator.execute_migration(RunScope(source_org='other'))
        assert exc_info.value.run_id == handle.run_id
        after = handle.progress()
        assert after.run_id == before.run_id
        assert after.total_teams == before.total_teams == 3
        assert after.processed_teams == before.processed_teams
        assert after.scope == before.scope

        with pytest.raises(AlreadyRunning):
            orchestrator.reset_migration_status()
        with pytest.raises(AlreadyRunning):
            orchestrator.clear_run()

        run = await handle.wait()
        assert run.status == RunStatus.COMPLETED
        assert run.processed_teams == 3

    async def test_cancel_stops_between_teams(self, store):
        destination = FakeDestinationConnector(delay=0.02)
        for i in range(10):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination, workers=1)

        handle = await orchestrator.execute_migration()
        await asyncio.sleep(0.01)
        assert orchestrator.cancel_migration() is True
        assert orchestrator.cancel_migration() is True
        run = await handle.wait()

        assert run.status == RunStatus.CANCELLED
        assert 0 < run.processed_teams < 10
        mappings, _ = store.query_mappings()
        statuses = [m.migration_status for m in mappings]
        assert MigrationStatus.IN_PROGRESS not in statuses
        assert statuses.count(MigrationStatus.COMPLETED) == run.processed_teams
        assert statuses.count(MigrationStatus.PENDING) == 10 - run.processed_teams

    def test_cancel_when_idle_is_noop(self, store, destination):
        orchestrator = MigrationOrchestrator(store, destination)

        assert orchestrator.cancel_migration() is False
        assert orchestrator.progress.snapshot().status == RunStatus.NOT_STARTED

    async def test_clear_run_after_completion(self, store, destination):
        add_mapping(store, slug='ops')
        orchestrator = MigrationOrchestrator(store, destination)
        await run_to_completion(orchestrator)

        orchestrator.clear_run()

        assert orchestrator.progress.snapshot().status == RunStatus.NOT_STARTED

    def test_workers_must_be_positive(self, store, destination):
        with pytest.raises(ValueError):
            MigrationOrchestrator(store, destination, workers=0)


class FailingStore(InMemoryMappingStore):
    """Store whose writes fail for one team."""

    def __init__(self, failing_slug):
        super().__init__()
        self.failing_slug = failing_slug
        self.armed = False

    def upsert_mapping(self, mapping):
        if self.armed and mapping.source_slug == self.failing_slug:
            raise StoreError('disk full')
        return super().upsert_mapping(mapping)


class TestStoreFailures:
    """The store being unavailable is fatal to the run."""

    async def test_store_failure_stops_dispatch(self, destination):
        store = FailingStore('team-2')
        for i in range(5):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        store.armed = True
        orchestrator = MigrationOrchestrator(store, destination, workers=1)

        run = await run_to_completion(orchestrator)

        assert run.status == RunStatus.COMPLETED_WITH_ERRORS
        assert run.processed_teams == 3
        assert run.failed_teams == 1
        assert any('disk full' in error for error in run.errors)
        assert store.get_mapping('src', 'team-4').migration_status == MigrationStatus.PENDING


class TestEditsDuringRun:
    """Rows edited while a run is going keep the user's changes."""

    async def test_user_edits_survive_the_run(self, store):
        destination = FakeDestinationConnector(delay=0.02)
        for i in range(3):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination, workers=1)

        handle = await orchestrator.execute_migration()
        edited = store.get_mapping('src', 'team-2')
        edited.mapping_status = MappingStatus.SKIPPED
        edited.destination_team_name = 'Renamed'
        store.upsert_mapping(edited)
        run = await handle.wait()

        assert run.processed_teams == 3
        mapping = store.get_mapping('src', 'team-2')
        assert mapping.mapping_status == MappingStatus.SKIPPED
        assert mapping.destination_team_name == 'Renamed'
        assert mapping.migration_status == MigrationStatus.COMPLETED
        assert mapping.team_created_in_dest is True

    async def test_deleted_row_is_not_recreated(self, store):
        destination = FakeDestinationConnector(delay=0.02)
        for i in range(3):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination, workers=1)

        handle = await orchestrator.execute_migration()
        store.delete_mapping('src', 'team-1')
        run = await handle.wait()

        assert run.status == RunStatus.COMPLETED
        assert run.processed_teams == 3
        assert store.find_mapping('src', 'team-1') is None
        assert store.query_mappings()[1] == 2

    async def test_adopted_destination_slug_is_saved(self, store, destination):
        add_mapping(store, slug='ops', destination_slug='ops')

        async def create_team(org, slug, name, privacy='closed', description=None):
            return Team(org=org, slug='ops-team', name=name)

        destination.create_team = create_team
        await run_to_completion(MigrationOrchestrator(store, destination))

        assert store.get_mapping('src', 'ops').destination_slug == 'ops-team'


class CancellingStore(InMemoryMappingStore):
    """Store that cancels the run while the work set is being loaded."""

    orchestrator = None
    cancel_result = None

    def query_mappings(self, filters=None, limit=None, offset=0):
        if self.orchestrator is not None:
            self.cancel_result = self.orchestrator.cancel_migration()
        return super().query_mappings(filters, limit, offset)


class TestCancelDuringLoad:
    async def test_cancel_while_loading_is_kept(self, destination):
        store = CancellingStore()
        for i in range(5):
            add_mapping(store, slug=f'team-{i}', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination)
        store.orchestrator = orchestrator

        run = await run_to_completion(orchestrator)

        assert store.cancel_result is True
        assert run.status == RunStatus.CANCELLED
        assert run.total_teams == 5
        assert run.processed_teams == 0
        assert destination.created == []
        store.orchestrator = None
        statuses = {m.migration_status for m in store.query_mappings()[0]}
        assert statuses == {MigrationStatus.PENDING}

    async def test_next_run_is_not_cancelled(self, destination):
        store = CancellingStore()
        add_mapping(store, slug='ops', eligible=1)
        orchestrator = MigrationOrchestrator(store, destination)
        store.orchestrator = orchestrator
        await run_to_completion(orchestrator)
        store.orchestrator = None

        run = await run_to_completion(orchestrator)

        assert run.status == RunStatus.COMPLETED
        assert run.processed_teams == 1


class TestRecovery:
    """Rows left in progress by a crashed process."""

    def test_recover_stale(self, store, destination):
        add_mapping(store, slug='fresh', migration_status=MigrationStatus.IN_PROGRESS)
        add_mapping(
            store,
            slug='half',
            migration_status=MigrationStatus.IN_PROGRESS,
            team_created_in_dest=True,
        )
        add_mapping(store, slug='done', migration_status=MigrationStatus.COMPLETED)
        orchestrator = MigrationOrchestrator(store, destination)

        assert orchestrator.recover_stale() == 2

        assert store.get_mapping('src', 'fresh').migration_status == MigrationStatus.PENDING
        half = store.get_mapping('src', 'half')
        assert half.migration_status == MigrationStatus.FAILED
        assert half.error_message == INTERRUPTED_MESSAGE
        assert store.get_mapping('src', 'done').migration_status == MigrationStatus.COMPLETED


class TestStatusReport:
    async def test_get_status(self, store, destination):
        add_mapping(store, slug='one', eligible=1)
        add_mapping(store, slug='two', mapping_status=MappingStatus.UNMAPPED)
        orchestrator = MigrationOrchestrator(store, destination)
        await run_to_completion(orchestrator)

        status = orchestrator.get_status()

        assert status['is_running'] is False
        assert status['progress'].status == RunStatus.COMPLETED
        assert status['execution_stats']['total_mapped'] == 1
        assert status['execution_stats']['migration_status']['completed'] == 1
        assert status['execution_stats']['sync_status'] == {'complete': 1}
        assert status['mapping_stats'] == {
            'total': 2,
            'mapped': 1,
            'unmapped': 1,
            'skipped': 0,
        }
