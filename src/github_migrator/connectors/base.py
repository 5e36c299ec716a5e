"""Connector interfaces for source and destination platforms."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models.team import Team, TeamMember, TeamRepositoryRef


class SourceConnector(ABC):
    """Read-only access to teams on the source platform."""

    platform: str = 'unknown'

    @abstractmethod
    def list_teams(self, org: str) -> List[Team]:
        """List all teams of an organization (or Azure DevOps project)."""

    @abstractmethod
    def list_team_members(self, org: str, slug: str) -> List[TeamMember]:
        """List the members of a team."""

    @abstractmethod
    def list_team_repositories(self, org: str, slug: str) -> List[TeamRepositoryRef]:
        """List the repositories a team can access, with permission levels."""


class DestinationConnector(ABC):
    """Team management on the destination GitHub organization.

    Calls are coroutines so that many teams can be processed concurrently.
    """

    @abstractmethod
    async def get_team(self, org: str, slug: str) -> Optional[Team]:
        """Return the team, or None if it does not exist."""

    @abstractmethod
    async def create_team(
        self,
        org: str,
        slug: str,
        name: str,
        privacy: str = 'closed',
        description: Optional[str] = None,
    ) -> Team:
        """Create an empty team.

        Membership is never pushed: in EMU / IdP managed organizations team
        membership is provisioned by the identity provider.
        """

    @abstractmethod
    async def set_repo_permission(
        self, org: str, team_slug: str, repo_full_name: str, permission: str
    ) -> None:
        """Grant ``team_slug`` the ``permission`` on ``repo_full_name``.

        Granting the same permission twice is not an error.
        """

    async def list_team_slugs(self, org: str) -> List[str]:
        """List team slugs in the destination organization."""
        return []
