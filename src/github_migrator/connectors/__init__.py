"""Source and destination platform connectors."""

from .base import DestinationConnector, SourceConnector
from .github import GitHubDestinationConnector, GitHubSourceConnector
from .azure_devops import AzureDevOpsSourceConnector

__all__ = [
    'DestinationConnector',
    'SourceConnector',
    'GitHubDestinationConnector',
    'GitHubSourceConnector',
    'AzureDevOpsSourceConnector',
]
