"""Shared fixtures: in-memory connectors and mapping factories."""

import asyncio
from typing import Dict, List, Optional

import pytest

from github_migrator.api.exceptions import GitHubAPIError, GitHubValidationError
from github_migrator.config.config import Config
from github_migrator.connectors.base import DestinationConnector, SourceConnector
from github_migrator.models.mapping import MappingStatus, TeamMapping, TeamRepository
from github_migrator.models.team import Team, TeamMember, TeamRepositoryRef
from github_migrator.store.memory import InMemoryMappingStore


class FakeSourceConnector(SourceConnector):
    """Source platform held in memory."""

    platform = 'fake'

    def __init__(self):
        self.teams: Dict[str, List[Team]] = {}
        self.repositories: Dict[tuple, List[TeamRepositoryRef]] = {}
        self.members: Dict[tuple, List[TeamMember]] = {}
        self.fail_repositories = set()

    def add_team(self, org, slug, name=None, repositories=None, members=None):
        self.teams.setdefault(org, []).append(Team(org=org, slug=slug, name=name or slug))
        self.repositories[(org, slug)] = [
            TeamRepositoryRef(full_name=full_name, permission=permission)
            for full_name, permission in (repositories or [])
        ]
        self.members[(org, slug)] = [TeamMember(login=login) for login in members or []]

    def list_teams(self, org: str) -> List[Team]:
        return list(self.teams.get(org, []))

    def list_team_members(self, org: str, slug: str) -> List[TeamMember]:
        return list(self.members.get((org, slug), []))

    def list_team_repositories(self, org: str, slug: str) -> List[TeamRepositoryRef]:
        if slug in self.fail_repositories:
            raise GitHubAPIError('source unavailable', status_code=502)
        return list(self.repositories.get((org, slug), []))


class FakeDestinationConnector(DestinationConnector):
    """Destination organization held in memory.

    ``fail_lookup`` / ``fail_create`` hold team slugs and ``fail_repos``
    holds destination repository names whose calls raise. ``delay`` makes
    every call yield to the event loop for that many seconds.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.teams: Dict[tuple, Team] = {}
        self.grants: List[tuple] = []
        self.created: List[tuple] = []
        self.fail_lookup = set()
        self.fail_create = set()
        self.fail_repos = set()
        self.active = 0
        self.max_active = 0

    async def _enter(self):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

    async def get_team(self, org: str, slug: str) -> Optional[Team]:
        await self._enter()
        if slug in self.fail_lookup:
            raise GitHubAPIError('lookup failed', status_code=500)
        return self.teams.get((org, slug))

    async def create_team(self, org, slug, name, privacy='closed', description=None):
        await self._enter()
        if slug in self.fail_create:
            raise GitHubValidationError('Validation failed: name taken', status_code=422)
        team = Team(org=org, slug=slug, name=name, privacy=privacy)
        self.teams[(org, slug)] = team
        self.created.append((org, slug, name, privacy))
        return team

    async def set_repo_permission(self, org, team_slug, repo_full_name, permission):
        await self._enter()
        if repo_full_name in self.fail_repos:
            raise GitHubAPIError('repository permission failed', status_code=500)
        self.grants.append((org, team_slug, repo_full_name, permission))

    async def list_team_slugs(self, org: str) -> List[str]:
        return [slug for (team_org, slug) in self.teams if team_org == org]


def add_mapping(
    store,
    org='src',
    slug='team',
    destination_org='dest',
    destination_slug=None,
    eligible=0,
    ineligible=0,
    mapping_status=MappingStatus.MAPPED,
    **fields,
) -> TeamMapping:
    """Store a mapping with ``eligible`` migrated and ``ineligible`` unmigrated repos."""
    fields.setdefault('source_team_name', slug.title())
    mapping = TeamMapping(
        source_org=org,
        source_slug=slug,
        destination_org=destination_org if mapping_status == MappingStatus.MAPPED else None,
        destination_slug=(destination_slug or slug)
        if mapping_status == MappingStatus.MAPPED
        else None,
        mapping_status=mapping_status,
        **fields,
    )
    store.upsert_mapping(mapping)

    repositories = [
        TeamRepository(
            source_full_name=f'{org}/{slug}-repo-{i}',
            destination_full_name=f'{destination_org}/{slug}-repo-{i}',
            permission='push',
        )
        for i in range(eligible)
    ] + [
        TeamRepository(source_full_name=f'{org}/{slug}-legacy-{i}', permission='pull')
        for i in range(ineligible)
    ]
    if repositories:
        store.save_team_repositories(org, slug, repositories)
    return mapping


@pytest.fixture
def store():
    return InMemoryMappingStore()


@pytest.fixture
def source():
    return FakeSourceConnector()


@pytest.fixture
def destination():
    return FakeDestinationConnector()


@pytest.fixture
def config(tmp_path):
    return Config(
        source={'type': 'github', 'token': 'source-token'},
        destination={'token': 'dest-token'},
        store={'path': str(tmp_path / 'mappings.json')},
    )
