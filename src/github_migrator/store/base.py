"""Mapping store interface."""

from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.mapping import (
    MIGRATION_STATE_FIELDS,
    MappingFilter,
    MappingStatus,
    MigrationStatus,
    TeamMapping,
    TeamRepository,
)


class StoreError(Exception):
    """The mapping store could not be read or written."""

    pass


class MappingNotFoundError(StoreError):
    """Referenced mapping does not exist."""

    def __init__(self, source_org: str, source_slug: str):
        super().__init__(f'Team mapping not found: {source_org}/{source_slug}')
        self.source_org = source_org
        self.source_slug = source_slug


class MappingStore(ABC):
    """System of record for team mappings and their team repositories."""

    @abstractmethod
    def query_mappings(
        self,
        filters: Optional[MappingFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[TeamMapping], int]:
        """List mappings ordered by source org and slug.

        Args:
            filters: Optional status / org / search filter
            limit: Maximum rows to return, None for all
            offset: Rows to skip

        Returns:
            The requested page and the total number of matching rows
        """

    @abstractmethod
    def get_mapping(self, source_org: str, source_slug: str) -> TeamMapping:
        """Return one mapping.

        Raises:
            MappingNotFoundError: If the mapping does not exist
        """

    @abstractmethod
    def upsert_mapping(self, mapping: TeamMapping) -> bool:
        """Insert or replace a mapping keyed by source org and slug.

        Returns:
            True if the mapping was created, False if it replaced a row
        """

    @abstractmethod
    def delete_mapping(self, source_org: str, source_slug: str) -> None:
        """Delete a mapping and its team repositories.

        Raises:
            MappingNotFoundError: If the mapping does not exist
        """

    @abstractmethod
    def list_team_repositories(
        self, source_org: str, source_slug: str
    ) -> List[TeamRepository]:
        """Return all repositories recorded for a source team."""

    @abstractmethod
    def save_team_repositories(
        self, source_org: str, source_slug: str, repositories: Iterable[TeamRepository]
    ) -> None:
        """Replace the repositories recorded for a source team."""

    # Operations built on the primitives above

    def find_mapping(self, source_org: str, source_slug: str) -> Optional[TeamMapping]:
        try:
            return self.get_mapping(source_org, source_slug)
        except MappingNotFoundError:
            return None

    def list_eligible_repositories(
        self, source_org: str, source_slug: str
    ) -> List[TeamRepository]:
        """Repositories of a team that exist in the destination."""
        return [
            repo
            for repo in self.list_team_repositories(source_org, source_slug)
            if repo.is_eligible
        ]

    def update_migration_state(
        self, source_org: str, source_slug: str, **fields
    ) -> Optional[TeamMapping]:
        """Write run-owned fields onto the current row.

        The row is read again before writing, so edits made while a run is
        going (mapping status, destination names) are kept. Only
        ``MIGRATION_STATE_FIELDS`` and an adopted ``destination_slug`` may be
        written.

        Returns:
            The updated mapping, or None if the row no longer exists

        Raises:
            ValueError: If a field is not migration state
        """
        unknown = set(fields) - set(MIGRATION_STATE_FIELDS) - {'destination_slug'}
        if unknown:
            raise ValueError(f'Not migration state: {", ".join(sorted(unknown))}')

        mapping = self.find_mapping(source_org, source_slug)
        if mapping is None:
            return None
        for name, value in fields.items():
            setattr(mapping, name, value)
        self.upsert_mapping(mapping)
        return mapping

    def mark_repositories_synced(
        self,
        source_org: str,
        source_slug: str,
        source_full_names: Iterable[str],
        synced_at: Optional[datetime] = None,
    ) -> None:
        """Record that a team's permissions on some repositories were applied."""
        names = set(source_full_names)
        if not names:
            return
        synced_at = synced_at or datetime.now()
        repositories = self.list_team_repositories(source_org, source_slug)
        for repo in repositories:
            if repo.source_full_name in names:
                repo.synced_at = synced_at
        self.save_team_repositories(source_org, source_slug, repositories)

    def merge_team_repositories(
        self, source_org: str, source_slug: str, repositories: Iterable[TeamRepository]
    ) -> None:
        """Replace a team's repositories, keeping known destinations and sync marks.

        A sync mark survives only while destination and permission are unchanged.
        """
        existing = {
            repo.source_full_name: repo
            for repo in self.list_team_repositories(source_org, source_slug)
        }
        merged = []
        for repo in repositories:
            previous = existing.get(repo.source_full_name)
            if previous is not None:
                if repo.destination_full_name is None:
                    repo.destination_full_name = previous.destination_full_name
                if (
                    previous.destination_full_name == repo.destination_full_name
                    and previous.permission == repo.permission
                ):
                    repo.synced_at = previous.synced_at
            merged.append(repo)
        self.save_team_repositories(source_org, source_slug, merged)

    def set_repository_destination(
        self, source_full_name: str, destination_full_name: Optional[str]
    ) -> int:
        """Record where a source repository lives in the destination.

        Returns:
            Number of team repository records updated
        """
        updated = 0
        mappings, _ = self.query_mappings()
        for mapping in mappings:
            repositories = self.list_team_repositories(*mapping.key)
            changed = False
            for repo in repositories:
                if (
                    repo.source_full_name == source_full_name
                    and repo.destination_full_name != destination_full_name
                ):
                    repo.destination_full_name = destination_full_name
                    repo.synced_at = None
                    changed = True
                    updated += 1
            if changed:
                self.save_team_repositories(*mapping.key, repositories)
        return updated

    def reset_migration_status(self, source_org: Optional[str] = None) -> int:
        """Set migration_status back to pending for every mapping in scope.

        Destination state (team_created_in_dest, counters, sync marks) is kept
        so that the next run re-syncs instead of recreating.

        Returns:
            Number of mappings reset
        """
        count = 0
        mappings, _ = self.query_mappings(MappingFilter(source_org=source_org))
        for mapping in mappings:
            if mapping.migration_status == MigrationStatus.PENDING:
                continue
            mapping.migration_status = MigrationStatus.PENDING
            mapping.updated_at = datetime.now()
            self.upsert_mapping(mapping)
            count += 1
        return count

    def mapping_stats(self, source_org: Optional[str] = None) -> Dict[str, int]:
        mappings, total = self.query_mappings(MappingFilter(source_org=source_org))
        counts = Counter(m.mapping_status for m in mappings)
        return {
            'total': total,
            'mapped': counts[MappingStatus.MAPPED],
            'unmapped': counts[MappingStatus.UNMAPPED],
            'skipped': counts[MappingStatus.SKIPPED],
        }

    def execution_stats(self) -> Dict[str, object]:
        """Aggregate migration state across all mapped rows."""
        mappings, _ = self.query_mappings(MappingFilter(status=MappingStatus.MAPPED))
        by_migration = Counter(m.migration_status.value for m in mappings)
        by_sync = Counter(m.sync_status.value for m in mappings)
        return {
            'total_mapped': len(mappings),
            'migration_status': {
                status.value: by_migration[status.value] for status in MigrationStatus
            },
            'sync_status': dict(by_sync),
            'total_repos_synced': sum(m.repos_synced for m in mappings),
            'teams_created_in_dest': sum(1 for m in mappings if m.team_created_in_dest),
        }

    def suggest_mappings(
        self, destination_org: str, existing_slugs: Iterable[str]
    ) -> Dict[str, str]:
        """Suggest same-slug destination teams for unmapped rows."""
        available = set(existing_slugs)
        mappings, _ = self.query_mappings(MappingFilter(status=MappingStatus.UNMAPPED))
        return {
            m.source_full_slug: f'{destination_org}/{m.source_slug}'
            for m in mappings
            if m.source_slug in available
        }
