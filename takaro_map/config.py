"""Application settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel
from pydantic import Field
from pydantic import SecretStr
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class CacheTTL(BaseModel):
    """Freshness window per resource category, in seconds.

    Volatile data expires first; keep that ordering when tuning.
    """

    players_list: int = Field(default=30, description="Full player list per server")
    player_names: int = Field(default=5 * 60, description="Per-player identity lookups")
    game_servers: int = Field(default=15 * 60, description="Game-server list")
    map_info: int = Field(default=60 * 60, description="Map metadata")
    movement_paths: int = Field(
        default=5 * 60, description="Movement-path query per date range"
    )
    items: int = Field(default=30 * 60, description="Item catalog per server")
    area_search: int = Field(default=2 * 60, description="Box and radius searches")


class Settings(BaseSettings):
    """Runtime configuration, read from the environment and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream
    takaro_api_url: str = Field(
        default="https://api.takaro.io", description="Base URL of the Takaro API"
    )
    takaro_username: str | None = Field(
        default=None, description="Service account user (enables service mode)"
    )
    takaro_password: SecretStr | None = Field(
        default=None, description="Service account password"
    )
    takaro_domain: str | None = Field(
        default=None, description="Domain name or id the service account works in"
    )
    upstream_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for each upstream call in seconds"
    )
    page_size: int = Field(default=100, gt=0, description="Pagination page size")
    max_total: int = Field(
        default=10_000, gt=0, description="Safety ceiling for paginated fetches"
    )

    # Cache
    redis_url: str | None = Field(
        default=None,
        description="Shared cache backend; None keeps everything in-process",
    )
    redis_connect_timeout: float = Field(default=2.0, gt=0)
    cache_key_prefix: str = Field(default="takaro", description="Cache key namespace")
    cache_ttl: CacheTTL = Field(default_factory=CacheTTL)
    tile_cache_dir: Path = Field(
        default=Path("cache/tiles"), description="On-disk tile store"
    )

    # HTTP
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @property
    def service_mode(self) -> bool:
        """Whether credentials for a service account are configured."""
        return bool(self.takaro_username and self.takaro_password and self.takaro_domain)

    @property
    def dashboard_url(self) -> str:
        return self.takaro_api_url.replace("://api.", "://dashboard.")


@lru_cache
def get_settings() -> Settings:
    return Settings()
