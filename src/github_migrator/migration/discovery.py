"""Populate the mapping store from the source platform."""

from datetime import datetime
from typing import List

from loguru import logger
from pydantic import BaseModel, Field

from ..connectors.base import SourceConnector
from ..models.mapping import TeamMapping, TeamRepository, summarize_repositories
from ..store.base import MappingStore


class DiscoveryResult(BaseModel):
    """Counts from one discovery pass."""

    source_org: str
    teams: int = 0
    new_teams: int = 0
    updated_teams: int = 0
    repositories: int = 0
    members: int = 0
    errors: List[str] = Field(default_factory=list)


class TeamDiscovery:
    """Records source teams and their repositories as mapping rows.

    New teams become ``unmapped`` rows. Existing rows keep their mapping and
    migration state; only the source name and team repositories are refreshed.
    """

    def __init__(self, source: SourceConnector, store: MappingStore):
        self.source = source
        self.store = store
        self.logger = logger.bind(component='TeamDiscovery')

    def discover(self, org: str, include_members: bool = False) -> DiscoveryResult:
        """Discover all teams of a source organization.

        Args:
            org: Source organization (Azure DevOps: project)
            include_members: Also count team members

        Returns:
            Discovery counts
        """
        self.logger.info(f'Discovering teams in {org} ({self.source.platform})')
        result = DiscoveryResult(source_org=org)

        for team in self.source.list_teams(org):
            result.teams += 1
            try:
                refs = self.source.list_team_repositories(org, team.slug)
            except Exception as e:
                self.logger.warning(f'Failed to list repositories of {team.full_slug}: {e}')
                result.errors.append(f'{team.full_slug}: {e}')
                refs = []

            repositories = []
            for ref in refs:
                try:
                    repositories.append(
                        TeamRepository(source_full_name=ref.full_name, permission=ref.permission)
                    )
                except ValueError as e:
                    result.errors.append(f'{team.full_slug}: {ref.full_name}: {e}')
            result.repositories += len(repositories)

            if include_members:
                result.members += len(self.source.list_team_members(org, team.slug))

            self._record_team(org, team.slug, team.name, repositories, result)

        self.logger.info(
            f'Discovered {result.teams} teams in {org} '
            f'({result.new_teams} new, {result.repositories} repositories)'
        )
        return result

    def _record_team(
        self,
        org: str,
        slug: str,
        name: str,
        repositories: List[TeamRepository],
        result: DiscoveryResult,
    ) -> None:
        self.store.merge_team_repositories(org, slug, repositories)
        summary = summarize_repositories(self.store.list_team_repositories(org, slug))

        mapping = self.store.find_mapping(org, slug)
        if mapping is None:
            mapping = TeamMapping(
                source_org=org,
                source_slug=slug,
                source_team_name=name,
                total_source_repos=summary['total'],
                repos_eligible=summary['eligible'],
            )
            result.new_teams += 1
            self.logger.debug(f'New team {mapping.source_full_slug}')
        else:
            mapping.source_team_name = name
            mapping.total_source_repos = summary['total']
            mapping.repos_eligible = summary['eligible']
            mapping.repos_synced = min(mapping.repos_synced, summary['synced'])
            result.updated_teams += 1
        mapping.updated_at = datetime.now()
        self.store.upsert_mapping(mapping)

