"""Azure DevOps source connector.

Azure DevOps scopes teams to projects, so the ``org`` argument of every call
is a project name. Teams have no slug; one is derived from the team name.
Teams do not own repositories either: a team is given the project's
repositories with ``push`` permission, matching the default Contributors
access a project team has.
"""

import re
from typing import List

from ..api.azure_devops import AzureDevOpsClient
from ..models.team import Team, TeamMember, TeamRepositoryRef
from .base import SourceConnector

DEFAULT_TEAM_PERMISSION = 'push'


def slugify(name: str) -> str:
    """Turn a team name into a GitHub style slug."""
    slug = re.sub(r'[^a-z0-9]+', '-', name.strip().lower())
    return slug.strip('-') or 'team'


class AzureDevOpsSourceConnector(SourceConnector):
    """Reads project teams from an Azure DevOps organization."""

    platform = 'azuredevops'

    def __init__(self, client: AzureDevOpsClient):
        self.client = client
        self._team_names = {}

    def list_teams(self, org: str) -> List[Team]:
        teams = []
        for item in self.client.list_teams(org):
            slug = slugify(item['name'])
            self._team_names[(org, slug)] = item['name']
            teams.append(
                Team(
                    org=org,
                    slug=slug,
                    name=item['name'],
                    description=item.get('description') or None,
                )
            )
        return teams

    def _team_name(self, org: str, slug: str) -> str:
        if (org, slug) not in self._team_names:
            self.list_teams(org)
        return self._team_names.get((org, slug), slug)

    def list_team_members(self, org: str, slug: str) -> List[TeamMember]:
        members = []
        for item in self.client.list_team_members(org, self._team_name(org, slug)):
            identity = item.get('identity', {})
            members.append(
                TeamMember(
                    login=identity.get('uniqueName') or identity.get('id', ''),
                    name=identity.get('displayName'),
                    role='maintainer' if item.get('isTeamAdmin') else 'member',
                )
            )
        return members

    def list_team_repositories(self, org: str, slug: str) -> List[TeamRepositoryRef]:
        return [
            TeamRepositoryRef(
                full_name=f'{org}/{repo["name"]}', permission=DEFAULT_TEAM_PERMISSION
            )
            for repo in self.client.list_repositories(org)
            if not repo.get('isDisabled')
        ]
