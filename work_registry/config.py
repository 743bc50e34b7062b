"""
Configuration management for the Work Registry.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Work Registry")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./work_registry.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="'json' or 'console'")

    # Object storage
    storage_root_uri: str = Field(
        default="file://./objects",
        description="Base URI the object source lists from (file:// supported).",
    )
    storage_base_url: str = Field(
        default="http://localhost:8000/objects",
        description="Public base URL that signed retrieval URLs point at.",
    )
    works_bucket: str = Field(default="works")
    works_prefix_template: str = Field(
        default="{handle}/",
        description="Per-agent object prefix; {handle} and {agent_id} are substituted.",
    )
    object_page_size: int = Field(default=1000, ge=1)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Signing
    secret_key: str = Field(default="change-me")
    signed_url_ttl_seconds: int = Field(default=1800, gt=0)
    signed_url_sweep_probability: float = Field(default=0.01, ge=0, le=1)

    # Reconciliation
    reconcile_batch_size: int = Field(default=100, ge=1)

    # Delivery
    delivery_default_limit: int = Field(default=60, ge=1)
    delivery_max_limit: int = Field(default=200, ge=1)

    def prefix_for(self, handle: str, agent_id: Optional[str] = None) -> str:
        """Return the object prefix that holds an agent's works."""
        return self.works_prefix_template.format(handle=handle, agent_id=agent_id or "")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
