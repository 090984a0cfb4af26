from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache


class Settings(BaseSettings):
    # Optional provider keys, injected ahead of the public endpoints for eth/polygon
    alchemy_api_key: str | None = Field(default=None, description="Alchemy API key")
    infura_project_id: str | None = Field(default=None, description="Infura project id")

    # Endpoint overrides. RPC_OVERRIDES is a JSON object, RPC_GLOBAL_OVERRIDES a JSON list.
    rpc_overrides: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Per-chain RPC endpoint lists replacing the registry defaults",
    )
    rpc_global_overrides: list[str] = Field(
        default_factory=list,
        description="RPC endpoints tried before any chain's own list",
    )

    probe_timeout_seconds: float = Field(
        default=2.5, description="Timeout of the block-number liveness probe"
    )
    call_timeout_seconds: float = Field(
        default=7.0, description="Timeout of each ERC-20 metadata call"
    )
    stall_timeout_seconds: float = Field(
        default=0.75, description="Base stall timeout of the pooled connection"
    )
    rpc_request_timeout_seconds: float = Field(
        default=10.0, description="HTTP timeout of a single JSON-RPC request"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/supply.db",
        description="Database connection URL",
    )
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=4000, description="HTTP port")
    log_level: str = Field(default="INFO", description="Root log level")

    tokenlist_urls: str = Field(
        default="https://tokens.uniswap.org",
        description="Comma separated token list URLs used for logo discovery",
    )
    tokenlist_cache_path: str = Field(
        default="./data/tokenlists.json", description="Token list cache file"
    )
    tokenlist_ttl_seconds: float = Field(
        default=3600.0, description="In-memory token list lifetime"
    )

    branding_name: str = Field(default="MEDIAXR", description="Branding preset name")
    branding_symbol: str = Field(default="RXR", description="Branding preset symbol")
    branding_logo: str = Field(
        default="https://musicchain.netlify.app/android-chrome-512x512.png",
        description="Branding preset logo URL",
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("rpc_overrides")
    @classmethod
    def normalize_overrides(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        """Lowercase chain keys and drop blank URLs."""
        return {
            key.strip().lower(): [url.strip() for url in urls if url and url.strip()]
            for key, urls in value.items()
        }

    @field_validator("rpc_global_overrides")
    @classmethod
    def normalize_global_overrides(cls, value: list[str]) -> list[str]:
        return [url.strip() for url in value if url and url.strip()]

    def get_tokenlist_urls(self) -> list[str]:
        return [u.strip() for u in self.tokenlist_urls.split(",") if u.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
