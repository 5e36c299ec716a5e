"""GitHub REST API client implementation."""

import json
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import aiohttp
import requests
from loguru import logger
from pydantic import BaseModel

from .exceptions import (
    GitHubAPIError,
    GitHubAuthenticationError,
    GitHubNotFoundError,
    GitHubPermissionError,
    GitHubRateLimitError,
    GitHubValidationError,
)
from .rate_limiter import RateLimiter

USER_AGENT = 'github-migrator/0.1.0'
API_VERSION = '2022-11-28'


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any
    headers: Dict[str, str]
    success: bool


def _error_message(status_code: int, data: Any, text: str = '') -> str:
    if isinstance(data, dict) and data.get('message'):
        return data['message']
    if text:
        return f'HTTP {status_code}: {text}'
    return f'HTTP {status_code}'


def raise_for_status(
    status_code: int, headers: Dict[str, str], data: Any = None, text: str = ''
) -> None:
    """Translate an HTTP error status into the matching API exception.

    Args:
        status_code: HTTP status code
        headers: Response headers
        data: Decoded JSON body, if any
        text: Raw body text, used when the body is not JSON

    Raises:
        GitHubAPIError: For any status >= 400
    """
    if status_code < 400:
        return

    message = _error_message(status_code, data, text)
    response_data = data if isinstance(data, dict) else None

    if status_code == 429 or (
        status_code == 403 and headers.get('X-RateLimit-Remaining') == '0'
    ):
        retry_after = int(headers.get('Retry-After', 60))
        raise GitHubRateLimitError(
            f'Rate limit exceeded. Retry after {retry_after} seconds',
            retry_after=retry_after,
            status_code=status_code,
            response_data=response_data,
        )

    if status_code == 401:
        raise GitHubAuthenticationError(
            'Authentication failed', status_code=401, response_data=response_data
        )

    if status_code == 403:
        raise GitHubPermissionError(
            f'Permission denied: {message}',
            status_code=403,
            response_data=response_data,
        )

    if status_code == 404:
        raise GitHubNotFoundError(
            'Resource not found', status_code=404, response_data=response_data
        )

    if status_code == 422:
        raise GitHubValidationError(
            f'Validation failed: {message}',
            status_code=422,
            response_data=response_data,
        )

    raise GitHubAPIError(
        f'API request failed: {message}',
        status_code=status_code,
        response_data=response_data,
    )


class GitHubClient:
    """GitHub REST API client with token authentication."""

    def __init__(self, config):
        """Initialize GitHub client.

        Args:
            config: Instance configuration providing ``url``, ``token``,
                ``timeout`` and ``rate_limit_per_second``
        """
        if not config.token:
            raise GitHubAuthenticationError('No authentication token provided')

        self.config = config
        self.base_url = config.url.rstrip('/')
        self.rate_limiter = RateLimiter(config.rate_limit_per_second)

        self.session = requests.Session()
        self.session.headers.update(self._default_headers())

        logger.debug(f'Initialized GitHub client for {self.base_url}')

    def _default_headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.config.token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': API_VERSION,
            'User-Agent': USER_AGENT,
        }

    @property
    def uses_personal_access_token(self) -> bool:
        """Whether the client authenticates with a personal access token.

        GitHub App installation tokens start with ``ghs_``; everything else is
        treated as a user token.
        """
        return not self.config.token.startswith('ghs_')

    def _build_url(self, endpoint: str) -> str:
        """Build full API URL from endpoint.

        Args:
            endpoint: API endpoint path

        Returns:
            Full API URL
        """
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    def _handle_response(self, response: requests.Response) -> APIResponse:
        """Handle API response and convert to standard format.

        Args:
            response: Raw HTTP response

        Returns:
            Standardized API response

        Raises:
            GitHubAPIError: For various API errors
        """
        headers = dict(response.headers)

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = response.text

        raise_for_status(
            response.status_code,
            headers,
            data,
            response.text if isinstance(data, str) else '',
        )

        return APIResponse(
            status_code=response.status_code,
            data=data,
            headers=headers,
            success=200 <= response.status_code < 300,
        )

    def _request(
        self, method: str, endpoint: str, **kwargs
    ) -> APIResponse:
        url = self._build_url(endpoint)
        self.rate_limiter.acquire_sync()

        try:
            response = self.session.request(
                method, url, timeout=self.config.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f'Network error during {method} request: {e}')
            raise GitHubAPIError(f'Network error: {e}')

        return self._handle_response(response)

    def get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make GET request."""
        return self._request('GET', endpoint, params=params)

    def post(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make POST request."""
        return self._request('POST', endpoint, json=data)

    def put(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make PUT request."""
        return self._request('PUT', endpoint, json=data)

    def delete(self, endpoint: str) -> APIResponse:
        """Make DELETE request."""
        return self._request('DELETE', endpoint)

    async def _make_request_async(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> APIResponse:
        """Make asynchronous API request.

        Args:
            method: HTTP method
            endpoint: API endpoint
            params: Query parameters
            data: Request body data

        Returns:
            API response
        """
        url = self._build_url(endpoint)
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        await self.rate_limiter.acquire()

        async with aiohttp.ClientSession(
            headers=self._default_headers(), timeout=timeout
        ) as session:
            try:
                async with session.request(
                    method=method, url=url, params=params, json=data
                ) as response:
                    response_headers = dict(response.headers)
                    response_text = await response.text()

                    try:
                        response_data = (
                            json.loads(response_text) if response_text else None
                        )
                    except ValueError:
                        response_data = response_text

                    raise_for_status(
                        response.status,
                        response_headers,
                        response_data,
                        response_text if isinstance(response_data, str) else '',
                    )

                    return APIResponse(
                        status_code=response.status,
                        data=response_data,
                        headers=response_headers,
                        success=200 <= response.status < 300,
                    )

            except aiohttp.ClientError as e:
                logger.error(f'Network error during API request: {e}')
                raise GitHubAPIError(f'Network error: {e}')

    async def get_async(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make asynchronous GET request."""
        return await self._make_request_async('GET', endpoint, params=params)

    async def post_async(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make asynchronous POST request."""
        return await self._make_request_async('POST', endpoint, data=data)

    async def put_async(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make asynchronous PUT request."""
        return await self._make_request_async('PUT', endpoint, data=data)

    async def delete_async(self, endpoint: str) -> APIResponse:
        """Make asynchronous DELETE request."""
        return await self._make_request_async('DELETE', endpoint)

    def get_paginated(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        per_page: int = 100,
    ) -> List[Dict[str, Any]]:
        """Get all pages of a paginated endpoint.

        Args:
            endpoint: API endpoint
            params: Query parameters
            per_page: Items per page

        Returns:
            List of all items from all pages
        """
        all_items = []
        page = 1
        params = dict(params or {})
        params['per_page'] = per_page

        while True:
            params['page'] = page
            response = self.get(endpoint, params=params)

            items = response.data
            if not items:
                break

            all_items.extend(items)

            if len(items) < per_page:
                break

            page += 1

        logger.debug(f'Retrieved {len(all_items)} items from {endpoint}')
        return all_items

    def test_connection(self) -> bool:
        """Test connection to the GitHub instance.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            return self.get('/user').success
        except GitHubAPIError as e:
            logger.error(f'Connection test failed: {e}')
            return False

    async def get_authenticated_login(self) -> str:
        """Return the login of the user owning the token."""
        response = await self.get_async('/user')
        return response.data['login']

    def close(self):
        """Close the client session."""
        self.session.close()
        logger.debug('GitHub client session closed')

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
