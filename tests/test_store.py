"""Tests for mapping stores."""

import json
from datetime import datetime

import pytest

from conftest import add_mapping
from github_migrator.models.mapping import (
    MappingFilter,
    MappingStatus,
    MigrationStatus,
    TeamMapping,
    TeamRepository,
)
from github_migrator.store import (
    InMemoryMappingStore,
    JSONFileMappingStore,
    MappingNotFoundError,
    StoreError,
)


class TestInMemoryMappingStore:
    """Test the in-memory store and the shared store operations."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = InMemoryMappingStore()

    def test_upsert_and_get(self):
        mapping = TeamMapping(source_org='src', source_slug='ops')

        assert self.store.upsert_mapping(mapping) is True
        assert self.store.upsert_mapping(mapping) is False
        assert self.store.get_mapping('src', 'ops') == mapping

    def test_returned_rows_are_copies(self):
        add_mapping(self.store, slug='ops')

        row = self.store.get_mapping('src', 'ops')
        row.destination_org = 'elsewhere'

        assert self.store.get_mapping('src', 'ops').destination_org == 'dest'

    def test_upsert_keeps_created_at(self):
        original = add_mapping(self.store, slug='ops')
        replacement = original.copy(update={'created_at': datetime(2000, 1, 1)})

        self.store.upsert_mapping(replacement)

        assert self.store.get_mapping('src', 'ops').created_at == original.created_at

    def test_missing_mapping(self):
        with pytest.raises(MappingNotFoundError):
            self.store.get_mapping('src', 'missing')
        with pytest.raises(MappingNotFoundError):
            self.store.delete_mapping('src', 'missing')
        assert self.store.find_mapping('src', 'missing') is None

    def test_delete_removes_repositories(self):
        add_mapping(self.store, slug='ops', eligible=2)

        self.store.delete_mapping('src', 'ops')

        assert self.store.list_team_repositories('src', 'ops') == []

    def test_query_filters_and_pages(self):
        for slug in ('a', 'b', 'c', 'd'):
            add_mapping(self.store, slug=slug)
        add_mapping(self.store, slug='e', mapping_status=MappingStatus.UNMAPPED)

        page, total = self.store.query_mappings(
            MappingFilter(status=MappingStatus.MAPPED), limit=2, offset=1
        )

        assert total == 4
        assert [m.source_slug for m in page] == ['b', 'c']

    def test_eligible_repositories(self):
        add_mapping(self.store, slug='ops', eligible=2, ineligible=3)

        eligible = self.store.list_eligible_repositories('src', 'ops')

        assert [r.source_full_name for r in eligible] == ['src/ops-repo-0', 'src/ops-repo-1']

    def test_update_migration_state_keeps_user_fields(self):
        add_mapping(self.store, slug='ops')
        edited = self.store.get_mapping('src', 'ops')
        edited.mapping_status = MappingStatus.SKIPPED
        edited.destination_team_name = 'Operations'
        self.store.upsert_mapping(edited)

        updated = self.store.update_migration_state(
            'src',
            'ops',
            migration_status=MigrationStatus.COMPLETED,
            team_created_in_dest=True,
            destination_slug='ops-1',
        )

        mapping = self.store.get_mapping('src', 'ops')
        assert updated == mapping
        assert mapping.migration_status == MigrationStatus.COMPLETED
        assert mapping.team_created_in_dest is True
        assert mapping.destination_slug == 'ops-1'
        assert mapping.mapping_status == MappingStatus.SKIPPED
        assert mapping.destination_team_name == 'Operations'

    def test_update_migration_state_of_deleted_row(self):
        assert self.store.update_migration_state(
            'src', 'gone', migration_status=MigrationStatus.COMPLETED
        ) is None
        assert self.store.find_mapping('src', 'gone') is None

    def test_update_migration_state_rejects_user_fields(self):
        add_mapping(self.store, slug='ops')

        with pytest.raises(ValueError):
            self.store.update_migration_state(
                'src', 'ops', mapping_status=MappingStatus.MAPPED
            )

    def test_mark_repositories_synced(self):
        add_mapping(self.store, slug='ops', eligible=2)

        self.store.mark_repositories_synced('src', 'ops', ['src/ops-repo-1'])

        synced = [r.source_full_name for r in self.store.list_team_repositories('src', 'ops') if r.is_synced]
        assert synced == ['src/ops-repo-1']

    def test_merge_keeps_destination_and_sync_mark(self):
        add_mapping(self.store, slug='ops', eligible=2)
        self.store.mark_repositories_synced('src', 'ops', ['src/ops-repo-0', 'src/ops-repo-1'])

        self.store.merge_team_repositories(
            'src',
            'ops',
            [
                TeamRepository(source_full_name='src/ops-repo-0', permission='push'),
                TeamRepository(source_full_name='src/ops-repo-1', permission='admin'),
                TeamRepository(source_full_name='src/new', permission='pull'),
            ],
        )

        repositories = {r.source_full_name: r for r in self.store.list_team_repositories('src', 'ops')}
        assert repositories['src/ops-repo-0'].destination_full_name == 'dest/ops-repo-0'
        assert repositories['src/ops-repo-0'].is_synced
        # Permission changed, so the grant has to be applied again
        assert repositories['src/ops-repo-1'].destination_full_name == 'dest/ops-repo-1'
        assert not repositories['src/ops-repo-1'].is_synced
        assert not repositories['src/new'].is_eligible

    def test_set_repository_destination(self):
        add_mapping(self.store, slug='one', ineligible=1)
        self.store.save_team_repositories(
            'src',
            'two',
            [TeamRepository(source_full_name='src/one-legacy-0', permission='pull')],
        )

        updated = self.store.set_repository_destination('src/one-legacy-0', 'dest/legacy')

        # Only rows belonging to a mapping are visited
        assert updated == 1
        repo = self.store.list_team_repositories('src', 'one')[0]
        assert repo.destination_full_name == 'dest/legacy'
        assert self.store.set_repository_destination('src/one-legacy-0', 'dest/legacy') == 0

    def test_reset_migration_status(self):
        add_mapping(self.store, org='a', slug='one', migration_status=MigrationStatus.COMPLETED,
                    team_created_in_dest=True)
        add_mapping(self.store, org='a', slug='two', migration_status=MigrationStatus.FAILED)
        add_mapping(self.store, org='b', slug='three', migration_status=MigrationStatus.COMPLETED)
        add_mapping(self.store, org='a', slug='four')

        assert self.store.reset_migration_status('a') == 2

        one = self.store.get_mapping('a', 'one')
        assert one.migration_status == MigrationStatus.PENDING
        assert one.team_created_in_dest is True
        assert self.store.get_mapping('b', 'three').migration_status == MigrationStatus.COMPLETED

    def test_stats(self):
        add_mapping(self.store, slug='one', migration_status=MigrationStatus.COMPLETED,
                    team_created_in_dest=True, repos_synced=2, repos_eligible=2)
        add_mapping(self.store, slug='two')
        add_mapping(self.store, slug='three', mapping_status=MappingStatus.SKIPPED)

        assert self.store.mapping_stats() == {'total': 3, 'mapped': 2, 'unmapped': 0, 'skipped': 1}
        stats = self.store.execution_stats()
        assert stats['total_mapped'] == 2
        assert stats['migration_status'] == {
            'pending': 1,
            'in_progress': 0,
            'completed': 1,
            'failed': 0,
        }
        assert stats['sync_status'] == {'complete': 1, 'pending': 1}
        assert stats['total_repos_synced'] == 2
        assert stats['teams_created_in_dest'] == 1

    def test_suggest_mappings(self):
        add_mapping(self.store, slug='ops', mapping_status=MappingStatus.UNMAPPED)
        add_mapping(self.store, slug='web', mapping_status=MappingStatus.UNMAPPED)
        add_mapping(self.store, slug='api')

        suggestions = self.store.suggest_mappings('dest', ['ops', 'api'])

        assert suggestions == {'src/ops': 'dest/ops'}


class TestJSONFileMappingStore:
    """Test the JSON file store."""

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / 'state' / 'mappings.json'
        store = JSONFileMappingStore(str(path))
        add_mapping(store, slug='ops', eligible=1, migration_status=MigrationStatus.COMPLETED)
        store.mark_repositories_synced('src', 'ops', ['src/ops-repo-0'])

        reopened = JSONFileMappingStore(str(path))

        mapping = reopened.get_mapping('src', 'ops')
        assert mapping.migration_status == MigrationStatus.COMPLETED
        assert mapping.destination_full_slug == 'dest/ops'
        repositories = reopened.list_team_repositories('src', 'ops')
        assert repositories[0].is_synced

        document = json.loads(path.read_text())
        assert document['version'] == 1
        assert 'sync_status' not in document['mappings'][0]

    def test_missing_file_starts_empty(self, tmp_path):
        store = JSONFileMappingStore(str(tmp_path / 'missing.json'))

        assert store.query_mappings() == ([], 0)

    @pytest.mark.parametrize(
        'content',
        [
            '{not json',
            '[1, 2]',
            '{"mappings": [{"source_org": "src"}]}',
            '{"team_repositories": [{"source_org": "src"}]}',
        ],
    )
    def test_corrupt_file(self, tmp_path, content):
        path = tmp_path / 'mappings.json'
        path.write_text(content)

        with pytest.raises(StoreError):
            JSONFileMappingStore(str(path))

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('')
        store = JSONFileMappingStore(str(blocker / 'mappings.json'))

        with pytest.raises(StoreError):
            store.upsert_mapping(TeamMapping(source_org='src', source_slug='ops'))
