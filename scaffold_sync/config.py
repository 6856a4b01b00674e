"""
Application configuration management.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # GitHub
    github_token: Optional[str] = None
    github_hosts: List[str] = ["github.com"]
    github_api_base_url: str = "https://api.github.com"

    # Azure DevOps
    azure_devops_pat: Optional[str] = None
    azure_devops_hosts: List[str] = ["dev.azure.com"]

    # Catalog
    catalog_path: Optional[str] = None
    catalog_token: Optional[str] = None

    # Admin API
    admin_api_key: Optional[str] = None

    # Sync pipeline
    log_level: str = "INFO"
    target_timeout_seconds: int = 300
    run_timeout_seconds: Optional[int] = None
    max_concurrent_targets: int = 1
    fetch_concurrency: int = 8
    http_timeout_seconds: float = 30.0
    include_new_files: bool = False


# Global settings instance
settings = Settings()
