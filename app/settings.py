from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Immutable runtime configuration for the API.

    Notes
    -----
    - Every field can be overridden from the environment (or a `.env` file)
      using its upper-cased name, e.g. `SANITY_PROJECT_ID`, `LOG_LEVEL`.
      The write token is read from `SANITY_API_TOKEN`.
    - TTLs (time-to-live) are expressed in milliseconds and control how long
      cached responses are considered fresh.
    - `sanity_token` is only required for mutations.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    sanity_project_id: str = "demo"
    sanity_dataset: str = "production"
    sanity_api_version: str = "2024-03-21"
    sanity_use_cdn: bool = True
    sanity_token: Optional[str] = Field(default=None, validation_alias="SANITY_API_TOKEN")
    request_timeout: float = 20.0
    log_level: str = "INFO"
    # TTLs (in milliseconds) for in-memory caching
    cache_ttl_default: int = 5 * 60 * 1000
    cache_ttl_user: int = 5 * 60 * 1000
    cache_ttl_user_light: int = 10 * 60 * 1000  # identity-only projection changes rarely
    cache_ttl_profiles: int = 5 * 60 * 1000
    cache_ttl_lists: int = 2 * 60 * 1000
    cache_ttl_posts: int = 60 * 1000

    @property
    def sanity_base_url(self) -> str:
        host = "apicdn" if self.sanity_use_cdn else "api"
        return f"https://{self.sanity_project_id}.{host}.sanity.io/v{self.sanity_api_version}"

    @property
    def sanity_api_url(self) -> str:
        # mutations are never served by the CDN
        return f"https://{self.sanity_project_id}.api.sanity.io/v{self.sanity_api_version}"


settings = Settings()
