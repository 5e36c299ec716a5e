"""Team migration orchestration."""

from .errors import (
    AlreadyRunning,
    DestinationCreateFailed,
    DestinationError,
    DestinationLookupFailed,
    DestinationPermissionFailed,
    InvalidTransition,
    MigrationError,
    NotFound,
    NotMapped,
)
from .progress import ProgressTracker
from .strategy import MigrationContext, MigrationResult, TeamAction, TeamMigrationStrategy
from .orchestrator import MigrationOrchestrator
from .discovery import DiscoveryResult, TeamDiscovery
from .transfer import ImportResult, MappingTransfer, detect_format
from .engine import MigrationEngine, create_source_connector

__all__ = [
    'AlreadyRunning',
    'DestinationCreateFailed',
    'DestinationError',
    'DestinationLookupFailed',
    'DestinationPermissionFailed',
    'InvalidTransition',
    'MigrationError',
    'NotFound',
    'NotMapped',
    'ProgressTracker',
    'MigrationContext',
    'MigrationResult',
    'TeamAction',
    'TeamMigrationStrategy',
    'MigrationOrchestrator',
    'DiscoveryResult',
    'TeamDiscovery',
    'ImportResult',
    'MappingTransfer',
    'detect_format',
    'MigrationEngine',
    'create_source_connector',
]
