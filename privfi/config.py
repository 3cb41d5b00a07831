from pathlib import Path
from typing import Any, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.privacy.queue import QueueConfig


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalise addresses so ledger lookups compare consistently."""

        super().model_post_init(__context)

        if self.proxy_wallet_address:
            object.__setattr__(self, "proxy_wallet_address", self.proxy_wallet_address.strip().lower())

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=3001, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:8080", "http://localhost:8081"],
        description="Origins allowed to call the API",
    )

    # Chain / custodial wallet
    starknet_rpc_url: str = Field(
        default="https://starknet-mainnet.public.blastapi.io",
        description="Starknet JSON-RPC endpoint used for receipts",
    )
    proxy_wallet_address: str = Field(
        default="",
        description="Address of the custodial proxy wallet",
        validation_alias=AliasChoices("proxy_wallet_address", "PROXY_WALLET_ADDRESS"),
    )
    signer_url: str = Field(
        default="",
        description="Custodial signing service that signs and submits calls for the proxy wallet",
    )
    tx_poll_interval_seconds: float = Field(default=3.0, gt=0, description="Receipt polling interval")
    tx_confirmation_timeout_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Max seconds to wait for a transaction receipt",
    )

    # Privacy pool
    privacy_pool_url: str = Field(
        default="",
        description="Base URL of the privacy-pool SDK bridge",
    )

    # AVNU aggregator
    avnu_api_url: str = Field(default="https://starknet.api.avnu.fi", description="AVNU API base URL")
    avnu_integrator_name: str = Field(default="Privfi", description="Integrator name reported to AVNU")
    avnu_integrator_fee_recipient: str = Field(
        default="0x065c065c1cf438f91c3cffd47a959112f81b5f266d4890bbcdfb4088c39749e0",
        description="Address receiving integrator fees",
    )
    avnu_integrator_fee_bps: int = Field(default=15, ge=0, le=10_000, description="Integrator fee in bps")

    # Phase queue
    queue_tick_interval_seconds: float = Field(default=1.0, gt=0, description="Driver loop tick interval")
    queue_retry_delay_seconds: float = Field(default=5.0, ge=0, description="Fixed delay between phase retries")
    queue_max_retries: int = Field(default=3, ge=1, description="Attempts per phase before failing a request")
    queue_phase_timeout_seconds: Optional[float] = Field(
        default=300.0,
        description="Supervisory timeout wrapping each phase call (None disables it)",
    )
    queue_history_limit: int = Field(
        default=500,
        ge=0,
        description="Finished requests kept for status queries",
    )

    # Intake
    pending_deposit_match_window_seconds: int = Field(
        default=300,
        ge=0,
        description="How recent a pending deposit must be to match an unknown tx reference",
    )

    # Storage
    persist_state: bool = Field(default=True, description="Write ledger and swap records to disk")
    data_dir: Path = Field(default=BASE_DIR / "data", description="Directory for JSON state files")
    retention_days: int = Field(default=7, ge=1, description="Age after which finished records are pruned")
    retention_interval_seconds: float = Field(
        default=3600.0, gt=0, description="How often the retention sweep runs"
    )

    def queue_config(self) -> QueueConfig:
        return QueueConfig(
            tick_interval_seconds=self.queue_tick_interval_seconds,
            retry_delay_seconds=self.queue_retry_delay_seconds,
            max_retries=self.queue_max_retries,
            phase_timeout_seconds=self.queue_phase_timeout_seconds,
            history_limit=self.queue_history_limit,
        )


# Global settings instance
settings = Settings()
