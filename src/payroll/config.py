"""
Configuration management for Cardano Payroll.

Supports configuration via environment variables and .env files.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkType(str, Enum):
    """Cardano network types."""
    MAINNET = "mainnet"
    PREPROD = "preprod"
    PREVIEW = "preview"
    LOCAL = "local"


class NodeProvider(str, Enum):
    """Supported node providers for blockchain access."""
    BLOCKFROST = "blockfrost"
    OGMIOS = "ogmios"


class PayrollConfig(BaseSettings):
    """
    Configuration settings for the payroll service.

    All settings can be configured via environment variables with the PAYROLL_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="PAYROLL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    network: NetworkType = Field(
        default=NetworkType.PREPROD,
        description="Cardano network to connect to"
    )

    # Node provider settings
    node_provider: NodeProvider = Field(
        default=NodeProvider.BLOCKFROST,
        description="Provider for blockchain access"
    )

    # Blockfrost settings
    blockfrost_project_id: Optional[str] = Field(
        default=None,
        description="Blockfrost project ID for API access"
    )
    blockfrost_base_url: Optional[str] = Field(
        default=None,
        description="Custom Blockfrost base URL (optional)"
    )

    # Ogmios settings
    ogmios_host: str = Field(
        default="localhost",
        description="Ogmios server host"
    )
    ogmios_port: int = Field(
        default=1337,
        description="Ogmios server port"
    )

    # Funding wallet settings
    funding_address: Optional[str] = Field(
        default=None,
        description="Funding address (derived from the signing key when unset)"
    )
    signing_key_path: Optional[str] = Field(
        default=None,
        description="Path to the funding wallet's signing key file"
    )
    signing_key_cbor: Optional[str] = Field(
        default=None,
        description="CBOR-encoded signing key (alternative to file path)"
    )
    signing_key_hex: Optional[str] = Field(
        default=None,
        description="Raw 32-byte ed25519 signing key in hex"
    )

    # Transaction parameters
    validity_window_slots: int = Field(
        default=1000,
        ge=1,
        description="Slots added to the chain tip to form the transaction TTL"
    )

    # Submission settings
    submit_max_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum submission attempts for transient network failures"
    )
    submit_retry_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Base delay between submission attempts"
    )
    submit_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Time to wait for the network to answer a submission"
    )
    record_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts to record an accepted transaction hash in the log"
    )

    # Scheduling
    schedule_cron: str = Field(
        default="0 10 1 * *",
        description="Crontab expression for payroll runs (1st of the month, 10:00)"
    )
    schedule_interval_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Fixed interval between runs; overrides the cron expression"
    )
    schedule_timezone: str = Field(
        default="UTC",
        description="Timezone used to evaluate the cron expression"
    )

    # Database settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///payroll.db",
        description="SQLAlchemy database URL for recipients and the transaction log"
    )
    recipients_seed_file: Optional[str] = Field(
        default=None,
        description="JSON recipients file loaded into an empty recipients table on startup"
    )

    # API settings
    api_host: str = Field(
        default="127.0.0.1",
        description="Bind address for the HTTP API"
    )
    api_port: int = Field(
        default=3000,
        description="Port for the HTTP API"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def blockfrost_url(self) -> str:
        """Get the appropriate Blockfrost URL based on network."""
        if self.blockfrost_base_url:
            return self.blockfrost_base_url

        network_urls = {
            NetworkType.MAINNET: "https://cardano-mainnet.blockfrost.io/api/v0",
            NetworkType.PREPROD: "https://cardano-preprod.blockfrost.io/api/v0",
            NetworkType.PREVIEW: "https://cardano-preview.blockfrost.io/api/v0",
        }
        return network_urls.get(self.network, "https://cardano-preprod.blockfrost.io/api/v0")

    @property
    def is_mainnet(self) -> bool:
        return self.network == NetworkType.MAINNET


# Global config instance
_config: Optional[PayrollConfig] = None


def get_config() -> PayrollConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = PayrollConfig()
    return _config


def set_config(config: PayrollConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
