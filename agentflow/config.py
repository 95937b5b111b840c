"""
AgentFlow Configuration Management
Uses pydantic-settings for type-safe environment variable loading
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentFlowConfig(BaseSettings):
    """
    Static configuration shared by every component.

    Built once at startup and handed to each component's constructor;
    nothing reads the environment at call time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Network Configuration
    network_name: str = Field(default="Arc Testnet")
    chain_id: int = Field(default=5042002)
    rpc_url: str = Field(default="https://rpc.testnet.arc.network", description="JSON-RPC endpoint for balance reads")
    usdc_address: str = Field(
        default="0x3600000000000000000000000000000000000000",
        description="USDC token address on Arc"
    )
    verifying_contract: str = Field(
        default="0x0077777d7EBA4688BDeF3E311b846F25870A19B9",
        description="Gateway wallet contract that verifies batched authorizations"
    )

    # Wallet Configuration
    private_key: str = Field(default="", description="Key used to sign payments for /run")
    seller_address: str = Field(default="", description="Payee for all three agents")

    # Pricing Configuration (USDC)
    research_agent_price: Decimal = Field(default=Decimal("0.005"))
    analyst_agent_price: Decimal = Field(default=Decimal("0.003"))
    writer_agent_price: Decimal = Field(default=Decimal("0.008"))

    # Server Configuration
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=4000, description="Public API port")
    facilitator_port: int = Field(default=3000)
    research_agent_port: int = Field(default=3001)
    analyst_agent_port: int = Field(default=3002)
    writer_agent_port: int = Field(default=3003)
    facilitator_url_override: Optional[str] = Field(default=None, alias="FACILITATOR_URL")

    # Timeouts (seconds)
    payment_timeout_seconds: float = Field(default=90.0, description="Whole paid call per step")
    agent_timeout_seconds: float = Field(default=80.0, description="Protected operation budget")
    signature_timeout_seconds: float = Field(default=60.0, description="Signer round-trip")
    http_timeout_seconds: float = Field(default=85.0)
    health_timeout_seconds: float = Field(default=3.0)

    # x402 Protocol
    clock_skew_seconds: int = Field(default=600, description="validAfter tolerance")
    max_timeout_seconds: int = Field(
        default=345600,
        description="Authorization lifetime; Gateway settles batches later"
    )

    # Text generation (OpenAI-compatible Hermes endpoint)
    hermes_base_url: Optional[str] = Field(default=None)
    hermes_api_key: str = Field(default="")
    hermes_model: str = Field(default="Hermes-4-405B")

    # Rate limiting (slowapi syntax)
    run_rate_limit: str = Field(default="10/minute")

    # CORS Configuration
    cors_origin_regex: str = Field(
        default=r"^(https?://(localhost|127\.0\.0\.1)(:\d+)?|https://.*)$",
        description="Allowed CORS origins"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v):
        v = v.strip()
        if v and not v.startswith("0x"):
            return f"0x{v}"
        return v

    @property
    def network(self) -> str:
        """CAIP-2 network id used in price requirements"""
        return f"eip155:{self.chain_id}"

    @property
    def facilitator_url(self) -> str:
        if self.facilitator_url_override:
            return self.facilitator_url_override.rstrip("/")
        return f"http://{self.host}:{self.facilitator_port}"

    def agent_port(self, step: str) -> int:
        return {
            "research": self.research_agent_port,
            "analyst": self.analyst_agent_port,
            "writer": self.writer_agent_port,
        }[step]

    def agent_url(self, step: str) -> str:
        return f"http://{self.host}:{self.agent_port(step)}/run"

    def price_for(self, step: str) -> Decimal:
        return {
            "research": self.research_agent_price,
            "analyst": self.analyst_agent_price,
            "writer": self.writer_agent_price,
        }[step]


# Singleton instance
_config: AgentFlowConfig | None = None


def get_config() -> AgentFlowConfig:
    """Get or create configuration singleton"""
    global _config
    if _config is None:
        _config = AgentFlowConfig()
    return _config
