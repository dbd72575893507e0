"""
Application configuration management.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from doraflow.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Azure DevOps
    azure_devops_pat: str = Field(min_length=1)
    azure_devops_org: str = Field(min_length=1)
    azure_devops_exclude_projects: str = ""
    azure_devops_request_timeout: int = Field(default=30000, gt=0, le=300000)  # ms
    azure_devops_max_retries: int = Field(default=3, ge=0, le=10)
    azure_devops_rate_limit_per_min: int = Field(default=200, gt=0, le=1000)

    # Database
    database_url: str = "sqlite+aiosqlite:///./doraflow.db"

    # Application
    log_level: str = "INFO"
    ingestion_interval_seconds: int = Field(default=0, ge=0)

    @field_validator("azure_devops_pat", "azure_devops_org")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @property
    def exclude_projects(self) -> List[str]:
        """Project names excluded from ingestion, parsed from the comma-separated setting."""
        return [
            name.strip()
            for name in self.azure_devops_exclude_projects.split(",")
            if name.strip()
        ]

    @property
    def organization_url(self) -> str:
        return f"https://dev.azure.com/{self.azure_devops_org}"

    @property
    def request_timeout_seconds(self) -> float:
        return self.azure_devops_request_timeout / 1000


def load_settings(**overrides) -> Settings:
    """
    Build settings from the environment.

    Raises:
        ConfigurationError: If a required value is missing or a tunable is out of range
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) for error in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration ({fields}): {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return load_settings()
