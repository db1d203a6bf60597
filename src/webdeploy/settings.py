# src/webdeploy/settings.py
from pathlib import Path
from typing import Optional, Dict
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


VALID_PROFILES = ["auto", "static", "standalone"]
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """
    Single source of truth for all deployment settings.

    Configuration precedence:
    1. Values passed explicitly (CLI overrides)
    2. Environment variables
    3. .env file in the current working directory (not base_dir)
    4. Default values in this class (lowest priority)

    Usage:
        from webdeploy.settings import get_settings
        settings = get_settings()
        target = settings.deploy_path
    """

    # Application Settings
    app_name: str = Field(
        default="katelyatv",
        description="Application name shown in deployment output"
    )

    site_url: str = Field(
        default="https://wwwwwww.sylu.net",
        description="Public URL of the deployed site"
    )

    # Filesystem Layout
    base_dir: str = Field(
        default=".",
        description="Working directory that holds the archive and the hosting directory"
    )

    archive_name: str = Field(
        default="katelyatv-deploy.tar.gz",
        description="Deployment archive uploaded into base_dir"
    )

    deploy_dir: str = Field(
        default="public_html",
        description="Hosting directory served by the web server"
    )

    backup_dir: str = Field(
        default="public_html_backup",
        description="Whole-directory backup used for rollback"
    )

    temp_dir: str = Field(
        default="temp_deploy",
        description="Scratch directory the archive is extracted into"
    )

    state_file: str = Field(
        default=".deployment_state.json",
        description="JSON file tracking the latest deployment"
    )

    keep_archive: bool = Field(
        default=False,
        description="Keep the archive after a deployment instead of deleting it"
    )

    # Deployment Behaviour
    deployment_profile: str = Field(
        default="auto",
        description="Deployment profile: auto, static, or standalone"
    )

    max_size_mb: int = Field(
        default=100,
        description="Size budget for shared hosting; exceeding it only warns"
    )

    # Standalone Server
    node_binary: str = Field(
        default="node",
        description="Node.js executable used by the launcher script"
    )

    node_env: str = Field(
        default="production",
        description="NODE_ENV exported to the standalone server"
    )

    app_port: int = Field(
        default=3000,
        description="PORT exported to the standalone server"
    )

    app_hostname: str = Field(
        default="0.0.0.0",
        description="HOSTNAME exported to the standalone server"
    )

    startup_wait_seconds: float = Field(
        default=3.0,
        description="Grace period before checking that the server is still alive"
    )

    health_check_url: Optional[str] = Field(
        default=None,
        description="Optional URL probed over HTTP after the server starts"
    )

    health_check_attempts: int = Field(
        default=3,
        description="Number of HTTP probe attempts"
    )

    app_log_file: str = Field(
        default="app.log",
        description="Server output log, relative to deploy_dir"
    )

    pid_file: str = Field(
        default="app.pid",
        description="PID file of the started server, relative to deploy_dir"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('deployment_profile', mode='before')
    @classmethod
    def validate_deployment_profile(cls, v):
        """Validate deployment profile is one of the allowed values."""
        v = str(v).lower()
        if v not in VALID_PROFILES:
            raise ValueError(f"Invalid deployment_profile: {v}. Must be one of {VALID_PROFILES}")
        return v

    @field_validator('log_level', mode='before')
    @classmethod
    def validate_log_level(cls, v):
        """Normalize and validate the logging level."""
        v = str(v).upper()
        if v not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v

    @field_validator('max_size_mb', 'app_port', 'health_check_attempts')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator('startup_wait_seconds')
    @classmethod
    def validate_startup_wait(cls, v):
        if v < 0:
            raise ValueError("startup_wait_seconds cannot be negative")
        return v

    def resolve(self, name: str) -> Path:
        """Resolve a path relative to base_dir."""
        return Path(self.base_dir) / name

    @property
    def archive_path(self) -> Path:
        return self.resolve(self.archive_name)

    @property
    def deploy_path(self) -> Path:
        return self.resolve(self.deploy_dir)

    @property
    def backup_path(self) -> Path:
        return self.resolve(self.backup_dir)

    @property
    def temp_path(self) -> Path:
        return self.resolve(self.temp_dir)

    @property
    def state_path(self) -> Path:
        return self.resolve(self.state_file)

    def get_environment_dict(self) -> Dict[str, str]:
        """Get the environment exported to the standalone server.

        Returns:
            Dictionary of environment variables
        """
        return {
            'NODE_ENV': self.node_env,
            'PORT': str(self.app_port),
            'HOSTNAME': self.app_hostname,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_prefix="WEBDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
