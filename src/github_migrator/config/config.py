"""Configuration management for GitHub Migrator."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, Field, validator
import yaml
from dotenv import load_dotenv


SOURCE_TYPES = ['github', 'azuredevops']
TEAM_PRIVACY_LEVELS = ['closed', 'secret']


class SourceConfig(BaseModel):
    """Configuration for the source platform (GitHub or Azure DevOps)."""

    type: str = Field(default='github', description='Source platform type')
    url: str = Field(
        default='https://api.github.com',
        description='Source API URL (GitHub API base or https://dev.azure.com/<org>)',
    )
    token: str = Field(..., description='Personal access token')
    timeout: int = Field(default=30, description='Request timeout in seconds')
    rate_limit_per_second: float = Field(
        default=10.0, description='API requests per second limit'
    )

    @validator('type')
    def validate_type(cls, v):
        """Validate source platform type."""
        v = v.lower()
        if v not in SOURCE_TYPES:
            raise ValueError(f'Source type must be one of: {SOURCE_TYPES}')
        return v

    @validator('url')
    def validate_url(cls, v):
        """Validate source URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')

    @validator('token')
    def validate_token(cls, v):
        """Validate that a token is provided."""
        if not v:
            raise ValueError('Source token must be provided')
        return v

    @validator('rate_limit_per_second')
    def validate_rate_limit(cls, v):
        """Validate rate limit is positive."""
        if v <= 0:
            raise ValueError('Rate limit must be positive')
        return v


class GitHubInstanceConfig(BaseModel):
    """Configuration for the destination GitHub instance."""

    url: str = Field(default='https://api.github.com', description='GitHub API URL')
    token: str = Field(..., description='Personal access token')
    timeout: int = Field(default=30, description='Request timeout in seconds')
    rate_limit_per_second: float = Field(
        default=10.0, description='API requests per second limit'
    )
    remove_token_owner: bool = Field(
        default=True,
        description='Remove the token owner GitHub adds as maintainer of new teams',
    )

    @validator('url')
    def validate_url(cls, v):
        """Validate GitHub URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')

    @validator('token')
    def validate_token(cls, v):
        """Validate that a token is provided."""
        if not v:
            raise ValueError('Destination token must be provided')
        return v

    @validator('rate_limit_per_second')
    def validate_rate_limit(cls, v):
        """Validate rate limit is positive."""
        if v <= 0:
            raise ValueError('Rate limit must be positive')
        return v


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    workers: int = Field(default=5, description='Concurrent migration workers')
    dry_run: bool = Field(default=False, description='Perform dry run without changes')
    team_privacy: str = Field(
        default='closed', description='Privacy of teams created in destination'
    )
    error_display_limit: int = Field(
        default=5, description='Number of run errors shown before truncation'
    )

    @validator('workers')
    def validate_workers(cls, v):
        """Validate worker count is positive."""
        if v <= 0:
            raise ValueError('Workers must be positive')
        return v

    @validator('team_privacy')
    def validate_team_privacy(cls, v):
        """Validate team privacy level."""
        if v not in TEAM_PRIVACY_LEVELS:
            raise ValueError(f'Team privacy must be one of: {TEAM_PRIVACY_LEVELS}')
        return v

    @validator('error_display_limit')
    def validate_error_display_limit(cls, v):
        """Validate error display limit is positive."""
        if v <= 0:
            raise ValueError('Error display limit must be positive')
        return v


class StoreConfig(BaseModel):
    """Mapping store configuration."""

    path: str = Field(
        default='github-migrator.json', description='Path of the JSON mapping store'
    )


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default='127.0.0.1', description='Bind address')
    port: int = Field(default=8080, description='Bind port')
    poll_interval_seconds: float = Field(
        default=2.0, description='Suggested status polling interval for clients'
    )

    @validator('port')
    def validate_port(cls, v):
        """Validate port range."""
        if not 0 < v < 65536:
            raise ValueError('Port must be between 1 and 65535')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: str = Field(
        default='{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}',
        description='Log format',
    )

    @validator('level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for GitHub Migrator."""

    source: SourceConfig = Field(..., description='Source platform')
    destination: GitHubInstanceConfig = Field(
        ..., description='Destination GitHub instance'
    )
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    store: StoreConfig = Field(
        default_factory=StoreConfig, description='Mapping store settings'
    )
    server: ServerConfig = Field(
        default_factory=ServerConfig, description='HTTP server settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'  # Don't allow extra fields

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if not isinstance(config_data, dict):
            raise ValueError(f'Configuration file is not a mapping: {config_path}')

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config_data = {
            'source': {
                'type': os.getenv('SOURCE_TYPE'),
                'url': os.getenv('SOURCE_URL'),
                'token': os.getenv('SOURCE_TOKEN'),
            },
            'destination': {
                'url': os.getenv('DEST_GITHUB_URL'),
                'token': os.getenv('DEST_GITHUB_TOKEN'),
            },
            'migration': {
                'workers': int(os.getenv('MIGRATION_WORKERS', 5)),
                'team_privacy': os.getenv('MIGRATION_TEAM_PRIVACY'),
            },
            'store': {
                'path': os.getenv('STORE_PATH'),
            },
            'server': {
                'host': os.getenv('SERVER_HOST'),
                'port': os.getenv('SERVER_PORT'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.dict(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'source': {
                'type': 'github',
                'url': 'https://api.github.com',
                'token': 'your-source-personal-access-token',
                'timeout': 30,
            },
            'destination': {
                'url': 'https://api.github.com',
                'token': 'your-destination-personal-access-token',
                'timeout': 30,
                'remove_token_owner': True,
            },
            'migration': {
                'workers': 5,
                'dry_run': False,
                'team_privacy': 'closed',
                'error_display_limit': 5,
            },
            'store': {
                'path': 'github-migrator.json',
            },
            'server': {
                'host': '127.0.0.1',
                'port': 8080,
            },
            'logging': {
                'level': 'INFO',
                'file': 'migration.log',
                'format': '{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
