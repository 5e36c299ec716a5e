"""GitHub source and destination connectors."""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from loguru import logger

from ..api.client import GitHubClient
from ..api.exceptions import GitHubAPIError, GitHubNotFoundError
from ..models.mapping import VALID_PERMISSIONS
from ..models.team import Team, TeamMember, TeamRepositoryRef
from .base import DestinationConnector, SourceConnector


def _team_from_api(org: str, data: Dict[str, Any]) -> Team:
    return Team(
        id=data.get('id'),
        org=org,
        slug=data['slug'],
        name=data.get('name') or data['slug'],
        description=data.get('description'),
        privacy=data.get('privacy'),
    )


def highest_permission(repo_data: Dict[str, Any]) -> str:
    """Pick the strongest permission GitHub reports for a team repository."""
    role_name = repo_data.get('role_name')
    if role_name in VALID_PERMISSIONS:
        return role_name
    if role_name == 'read':
        return 'pull'
    if role_name == 'write':
        return 'push'

    permissions = repo_data.get('permissions') or {}
    for permission in reversed(VALID_PERMISSIONS):
        if permissions.get(permission):
            return permission
    return 'pull'


class GitHubSourceConnector(SourceConnector):
    """Reads teams from a GitHub organization."""

    platform = 'github'

    def __init__(self, client: GitHubClient):
        self.client = client

    def list_teams(self, org: str) -> List[Team]:
        items = self.client.get_paginated(f'/orgs/{quote(org)}/teams')
        return [_team_from_api(org, item) for item in items]

    def list_team_members(self, org: str, slug: str) -> List[TeamMember]:
        items = self.client.get_paginated(
            f'/orgs/{quote(org)}/teams/{quote(slug)}/members'
        )
        return [TeamMember(login=item['login']) for item in items]

    def list_team_repositories(self, org: str, slug: str) -> List[TeamRepositoryRef]:
        items = self.client.get_paginated(
            f'/orgs/{quote(org)}/teams/{quote(slug)}/repos'
        )
        return [
            TeamRepositoryRef(
                full_name=item['full_name'], permission=highest_permission(item)
            )
            for item in items
        ]


class GitHubDestinationConnector(DestinationConnector):
    """Creates teams and grants repository permissions in a GitHub organization."""

    def __init__(self, client: GitHubClient, remove_token_owner: bool = True):
        self.client = client
        self.remove_token_owner = remove_token_owner
        self.logger = logger.bind(component='GitHubDestinationConnector')

    async def get_team(self, org: str, slug: str) -> Optional[Team]:
        try:
            response = await self.client.get_async(
                f'/orgs/{quote(org)}/teams/{quote(slug)}'
            )
        except GitHubNotFoundError:
            self.logger.debug(f'Team {org}/{slug} not found')
            return None
        return _team_from_api(org, response.data)

    async def create_team(
        self,
        org: str,
        slug: str,
        name: str,
        privacy: str = 'closed',
        description: Optional[str] = None,
    ) -> Team:
        payload: Dict[str, Any] = {'name': name, 'privacy': privacy}
        if description:
            payload['description'] = description

        response = await self.client.post_async(f'/orgs/{quote(org)}/teams', data=payload)
        team = _team_from_api(org, response.data)

        if team.slug != slug:
            self.logger.warning(
                f'GitHub assigned slug {team.slug} to team {name}, expected {slug}'
            )

        self.logger.info(f'Created team {org}/{team.slug} ({name})')

        if self.remove_token_owner and self.client.uses_personal_access_token:
            await self._remove_token_owner(org, team.slug)

        return team

    async def _remove_token_owner(self, org: str, slug: str) -> None:
        # GitHub adds the user behind a personal access token as maintainer
        # of every team it creates
        try:
            login = await self.client.get_authenticated_login()
            await self.client.delete_async(
                f'/orgs/{quote(org)}/teams/{quote(slug)}/memberships/{quote(login)}'
            )
            self.logger.info(f'Removed token owner {login} from team {org}/{slug}')
        except (GitHubAPIError, KeyError, TypeError) as e:
            self.logger.warning(
                f'Could not remove token owner from team {org}/{slug}: {e}'
            )

    async def set_repo_permission(
        self, org: str, team_slug: str, repo_full_name: str, permission: str
    ) -> None:
        owner, _, repo = repo_full_name.partition('/')
        if not owner or not repo:
            raise ValueError(f'Invalid repository full name: {repo_full_name}')
        if permission not in VALID_PERMISSIONS:
            raise ValueError(f'Invalid permission: {permission}')

        await self.client.put_async(
            f'/orgs/{quote(org)}/teams/{quote(team_slug)}/repos/'
            f'{quote(owner)}/{quote(repo)}',
            data={'permission': permission},
        )
        self.logger.debug(
            f'Granted {permission} on {repo_full_name} to {org}/{team_slug}'
        )

    async def list_team_slugs(self, org: str) -> List[str]:
        items = await asyncio.to_thread(
            self.client.get_paginated, f'/orgs/{quote(org)}/teams'
        )
        return [item['slug'] for item in items]
