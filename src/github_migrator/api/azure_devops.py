"""Azure DevOps REST API client."""

import base64
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from loguru import logger

from .exceptions import AzureDevOpsAPIError
from .rate_limiter import RateLimiter

API_VERSION = '7.1'


class AzureDevOpsClient:
    """Minimal Azure DevOps client for team and repository discovery.

    ``config.url`` is the organization URL, e.g. ``https://dev.azure.com/contoso``.
    """

    def __init__(self, config):
        if not config.token:
            raise AzureDevOpsAPIError('No authentication token provided')

        self.config = config
        self.base_url = config.url.rstrip('/')
        self.rate_limiter = RateLimiter(config.rate_limit_per_second)

        # PATs are sent as basic auth with an empty user name
        credentials = base64.b64encode(f':{config.token}'.encode()).decode()
        self.session = requests.Session()
        self.session.headers.update(
            {
                'Authorization': f'Basic {credentials}',
                'Accept': 'application/json',
                'User-Agent': 'github-migrator/0.1.0',
            }
        )

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` relative to the organization URL and return decoded JSON."""
        query = {'api-version': API_VERSION}
        query.update(params or {})
        url = f'{self.base_url}/{path.lstrip("/")}'

        self.rate_limiter.acquire_sync()
        try:
            response = self.session.get(url, params=query, timeout=self.config.timeout)
        except requests.RequestException as e:
            logger.error(f'Network error during Azure DevOps request: {e}')
            raise AzureDevOpsAPIError(f'Network error: {e}')

        if response.status_code >= 400:
            raise AzureDevOpsAPIError(
                f'Azure DevOps request failed: HTTP {response.status_code}',
                status_code=response.status_code,
            )

        return response.json() if response.content else None

    def get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """GET a collection endpoint, following ``$top``/``$skip`` paging."""
        items: List[Dict[str, Any]] = []
        top = 100
        skip = 0

        while True:
            page_params = dict(params or {})
            page_params.update({'$top': top, '$skip': skip})
            data = self.get(path, params=page_params) or {}
            page = data.get('value', [])
            items.extend(page)
            if len(page) < top:
                break
            skip += top

        return items

    def list_projects(self) -> List[Dict[str, Any]]:
        return self.get_list('_apis/projects')

    def list_teams(self, project: str) -> List[Dict[str, Any]]:
        return self.get_list(f'_apis/projects/{quote(project)}/teams')

    def list_team_members(self, project: str, team: str) -> List[Dict[str, Any]]:
        return self.get_list(
            f'_apis/projects/{quote(project)}/teams/{quote(team)}/members'
        )

    def list_repositories(self, project: str) -> List[Dict[str, Any]]:
        data = self.get(f'{quote(project)}/_apis/git/repositories') or {}
        return data.get('value', [])

    def close(self):
        self.session.close()
