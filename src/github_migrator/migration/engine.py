"""Migration engine - wires configuration to clients, store and orchestrator."""

from typing import Dict, Optional

from loguru import logger

from ..api.azure_devops import AzureDevOpsClient
from ..api.client import GitHubClient
from ..api.exceptions import AzureDevOpsAPIError
from ..config.config import Config
from ..connectors.azure_devops import AzureDevOpsSourceConnector
from ..connectors.base import DestinationConnector, SourceConnector
from ..connectors.github import GitHubDestinationConnector, GitHubSourceConnector
from ..store.base import MappingStore
from ..store.json_store import JSONFileMappingStore
from .discovery import TeamDiscovery
from .orchestrator import MigrationOrchestrator
from .transfer import MappingTransfer


def create_source_connector(config: Config) -> SourceConnector:
    """Build the source connector for the configured platform."""
    if config.source.type == 'azuredevops':
        return AzureDevOpsSourceConnector(AzureDevOpsClient(config.source))
    return GitHubSourceConnector(GitHubClient(config.source))


class MigrationEngine:
    """Main entry point that owns the store, connectors and orchestrator."""

    def __init__(
        self,
        config: Config,
        store: Optional[MappingStore] = None,
        source: Optional[SourceConnector] = None,
        destination: Optional[DestinationConnector] = None,
    ):
        """Initialize migration engine.

        Args:
            config: Migration configuration
            store: Mapping store, the JSON file store from config by default
            source: Source connector, built from config by default
            destination: Destination connector, built from config by default
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')

        self.store = store or JSONFileMappingStore(config.store.path)
        self.source = source or create_source_connector(config)
        if destination is None:
            self.destination_client = GitHubClient(config.destination)
            destination = GitHubDestinationConnector(
                self.destination_client,
                remove_token_owner=config.destination.remove_token_owner,
            )
        else:
            self.destination_client = None
        self.destination = destination

        self.orchestrator = MigrationOrchestrator(
            self.store,
            self.destination,
            workers=config.migration.workers,
            team_privacy=config.migration.team_privacy,
            error_display_limit=config.migration.error_display_limit,
        )
        self.discovery = TeamDiscovery(self.source, self.store)
        self.transfer = MappingTransfer(self.store)

        recovered = self.orchestrator.recover_stale()
        if recovered:
            self.logger.warning(f'Recovered {recovered} teams from an interrupted run')

    def test_connectivity(self) -> Dict[str, bool]:
        """Check that both platforms accept the configured tokens."""
        results = {}
        source_client = getattr(self.source, 'client', None)
        if isinstance(source_client, GitHubClient):
            results['source'] = source_client.test_connection()
        elif isinstance(source_client, AzureDevOpsClient):
            try:
                source_client.list_projects()
                results['source'] = True
            except AzureDevOpsAPIError as e:
                self.logger.error(f'Source connection test failed: {e}')
                results['source'] = False
        if self.destination_client is not None:
            results['destination'] = self.destination_client.test_connection()
        return results

    def close(self) -> None:
        """Close API sessions."""
        source_client = getattr(self.source, 'client', None)
        if source_client is not None:
            source_client.close()
        if self.destination_client is not None:
            self.destination_client.close()
