import os

from decimal import Decimal
from pathlib import Path
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

IRYS_DEVNET_GRAPHQL = "https://devnet.irys.xyz/graphql"
IRYS_MAINNET_GRAPHQL = "https://uploader.irys.xyz/graphql"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the legacy AMBERINK_ENV alias for the environment name."""

        super().model_post_init(__context)

        if self.environment == "local":
            fallback = os.getenv("AMBERINK_ENV")
            if fallback:
                object.__setattr__(self, "environment", fallback)

    # Runtime
    environment: str = Field(
        default="local",
        description="Environment name used to namespace every locally persisted key",
    )
    log_level: str = Field(default="INFO", description="Logging level")
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")

    # Chain
    rpc_url: str = Field(default="http://localhost:8545", description="JSON-RPC endpoint")
    chain_id: int = Field(default=31337, description="Settlement chain id")
    blog_hub_address: str = Field(
        default="0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9",
        description="BlogHub contract (target of every delegated call)",
    )
    session_key_manager_address: str = Field(
        default="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        description="SessionKeyManager contract (EIP-712 verifying contract)",
    )
    chainlink_price_feed_address: str = Field(
        default="0x0000000000000000000000000000000000000000",
        description="Chainlink native/USD aggregator; zero address means use the fallback price",
    )

    # Storage network
    irys_network: str = Field(default="devnet", description="Irys network: devnet or mainnet")
    irys_graphql_url: str = Field(
        default="",
        description="Override the Irys GraphQL endpoint (derived from irys_network when empty)",
    )
    arweave_gateways: str = Field(
        default="https://gateway.irys.xyz,https://arweave.net,https://arweave.dev",
        description="Comma-separated read gateways, in preference order",
    )
    app_name: str = Field(default="DBlog", description="App-Name tag on uploads")
    app_version: str = Field(default="1.0.0", description="App-Version tag on uploads")
    irys_free_upload_limit: int = Field(
        default=102400,
        description="Uploads at or below this many bytes are free on Irys",
    )

    # Funding
    min_gas_fee_multiplier: int = Field(
        default=10,
        description="Multiplier applied to the fee estimate to get the minimum balance",
    )
    default_gas_fee_multiplier: int = Field(
        default=30,
        description="Multiplier applied to the upload price when funding Irys",
    )
    default_charge_amt_usd: Decimal = Field(
        default=Decimal("1.00"),
        description="Default session key top-up, in USD",
    )
    price_cache_duration: int = Field(default=300, description="Native token price cache TTL in seconds")
    fallback_eth_price_usd: Decimal = Field(
        default=Decimal("3000"),
        description="Native token price used when no price feed is available",
    )

    # Local state
    session_key_store_path: str = Field(
        default=str(Path.home() / ".amberink" / "store.json"),
        description="JSON file backing the local key-value store",
    )

    @property
    def gateway_list(self) -> List[str]:
        return [g.strip().rstrip("/") for g in self.arweave_gateways.split(",") if g.strip()]

    @property
    def resolved_irys_graphql_url(self) -> str:
        if self.irys_graphql_url:
            return self.irys_graphql_url
        if self.irys_network == "mainnet":
            return IRYS_MAINNET_GRAPHQL
        return IRYS_DEVNET_GRAPHQL

    @property
    def has_price_feed(self) -> bool:
        return int(self.chainlink_price_feed_address, 16) != 0


settings = Settings()
