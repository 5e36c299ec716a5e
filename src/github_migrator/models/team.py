"""Team entities returned by source and destination connectors."""

from typing import Optional

from pydantic import BaseModel, Field


class Team(BaseModel):
    """A team on the source or destination platform."""

    id: Optional[int] = Field(default=None, description='Platform team ID')
    org: str = Field(..., description='Owning organization')
    slug: str = Field(..., description='Team slug')
    name: str = Field(..., description='Team display name')
    description: Optional[str] = Field(default=None, description='Team description')
    privacy: Optional[str] = Field(default=None, description='Team privacy')

    @property
    def full_slug(self) -> str:
        return f'{self.org}/{self.slug}'


class TeamMember(BaseModel):
    """A member of a source team."""

    login: str = Field(..., description='User login or unique name')
    name: Optional[str] = Field(default=None, description='Display name')
    email: Optional[str] = Field(default=None, description='Email address')
    role: str = Field(default='member', description='member or maintainer')


class TeamRepositoryRef(BaseModel):
    """A repository a source team can access, with its permission."""

    full_name: str = Field(..., description='owner/name on the source platform')
    permission: str = Field(default='pull', description='Team permission level')
