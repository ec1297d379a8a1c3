"""Client configuration using pydantic-settings.

Relay endpoints, protocol timeouts and per-network overrides for the
EVM and Tron settlement paths.
"""

import json
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NEXUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="mainnet", description="Network set: mainnet or testnet")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Relay / Middleware
    # ======================
    relay_url: str = Field(
        default="https://vsc1-testnet.arcana.network",
        description="Relay (middleware) base URL",
    )
    explorer_url: str = Field(
        default="https://explorer.nexus.availproject.org",
        description="Intent explorer base URL",
    )
    http_timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")
    sponsored_approval_timeout: float = Field(
        default=120.0, description="Timeout for the sponsored approvals request in seconds"
    )

    # ======================
    # Protocol Timing
    # ======================
    fulfilment_timeout: float = Field(
        default=180.0, description="Wall-clock wait for the fulfilment signal in seconds"
    )
    intent_expiry: int = Field(default=15 * 60, description="Settlement request expiry in seconds")
    receipt_timeout: float = Field(default=300.0, description="Transaction receipt wait in seconds")
    receipt_poll_interval: float = Field(default=2.0, description="Receipt poll interval in seconds")
    tron_poll_timeout: float = Field(default=120.0, description="Tron confirmation poll timeout")
    tron_poll_interval: float = Field(default=3.0, description="Tron confirmation poll interval")
    collection_timeout: float = Field(
        default=120.0, description="Wait for the relay to collect token sources in seconds"
    )
    collection_poll_interval: float = Field(default=3.0, description="Collection status poll interval")

    # ======================
    # Gas
    # ======================
    fee_history_blocks: int = Field(default=20, description="Blocks in the fee history window")
    base_fee_buffer_pct: int = Field(default=20, description="Buffer added to next base fee (%)")
    gas_buffer: float = Field(default=0.3, description="Safety buffer on estimated gas units")
    approval_gas: int = Field(default=70_000, description="Gas units assumed for an approval")
    deposit_gas_units: int = Field(
        default=200_000, description="Fixed gas units reserved for a native deposit"
    )
    deposit_gas_multiplier: float = Field(
        default=1.0, description="Default multiplier on the deposit gas reservation"
    )
    deposit_gas_multipliers: str = Field(
        default="", description='JSON map of chain id to multiplier, e.g. {"137": 2}'
    )

    # ======================
    # Network Overrides
    # ======================
    rpc_urls: str = Field(default="", description='JSON map of chain id to RPC URL')
    vault_addresses: str = Field(default="", description="JSON map of chain id to vault address")
    tron_api_url: Optional[str] = Field(default=None, description="Tron full node HTTP API URL")

    @property
    def is_testnet(self) -> bool:
        """Check if configured for testnet networks."""
        return self.environment.lower() == "testnet"

    def _chain_map(self, raw: str) -> dict[int, str]:
        if not raw:
            return {}
        return {int(k): v for k, v in json.loads(raw).items()}

    def get_rpc_override(self, chain_id: int) -> Optional[str]:
        """Get RPC URL override for a chain, if any."""
        return self._chain_map(self.rpc_urls).get(chain_id)

    def get_vault_address(self, chain_id: int) -> Optional[str]:
        """Get configured vault contract address for a chain."""
        return self._chain_map(self.vault_addresses).get(chain_id)

    def get_deposit_gas_multiplier(self, chain_id: int) -> float:
        """Get native deposit gas multiplier for a chain."""
        overrides = self._chain_map(self.deposit_gas_multipliers)
        return float(overrides.get(chain_id, self.deposit_gas_multiplier))

    def get_safe_dict(self) -> dict:
        """Return settings dict for diagnostics."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "relay_url": self.relay_url,
            "explorer_url": self.explorer_url,
            "fulfilment_timeout": self.fulfilment_timeout,
            "rpc_overrides": sorted(self._chain_map(self.rpc_urls)),
            "vaults": sorted(self._chain_map(self.vault_addresses)),
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
