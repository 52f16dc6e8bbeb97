"""Configuration settings for rc_configurator.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "rc-configurator"


def _default_devices_path() -> Path:
    """Return the default device catalog location."""
    return _default_data_dir() / "devices"


def _default_firmware_dir() -> Path:
    """Return the default firmware source checkout."""
    return _default_data_dir() / "firmware"


def _default_config_cache_dir() -> Path:
    """Return the default cache directory for the parameter repository."""
    return Path.home() / ".cache" / "rc-configurator" / "parameters"


def _default_firmwares_dir() -> Path:
    """Return the default directory for per-version firmware checkouts."""
    return Path.home() / ".cache" / "rc-configurator" / "firmwares"


def _default_targets_cache_dir() -> Path:
    """Return the default cache directory for the targets repository."""
    return Path.home() / ".cache" / "rc-configurator" / "targets"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RCCONF_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RCCONF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    devices_path: Path = Field(
        default_factory=_default_devices_path,
        description="Device catalog file or directory",
    )
    firmware_dir: Path = Field(
        default_factory=_default_firmware_dir,
        description="Firmware source tree the toolchain builds in",
    )
    platformio_path: str = Field(
        default="platformio",
        description="PlatformIO executable",
    )

    # Firmware versions
    firmware_repository: str = Field(
        default="https://github.com/ExpressLRS/ExpressLRS.git",
        description="Repository checked out for tag, branch and commit builds",
    )
    firmwares_dir: Path = Field(
        default_factory=_default_firmwares_dir,
        description="Directory holding one firmware checkout per version",
    )
    firmware_project_dir: str = Field(
        default="src",
        description="Directory inside a firmware tree holding platformio.ini",
    )

    # Targets loader
    targets_loader: Literal["git", "http"] = Field(
        default="git",
        description="Which targets loader backend is active",
    )
    targets_repository: str = Field(
        default="https://github.com/ExpressLRS/targets.git",
        description="Repository holding per-version target lists (git loader)",
    )
    targets_ref: str = Field(
        default="master",
        description="Branch listed when no firmware version is given",
    )
    targets_cache_dir: Path = Field(
        default_factory=_default_targets_cache_dir,
        description="Checkouts of the targets repository",
    )
    targets_endpoint: str = Field(
        default="https://artifactory.expresslrs.org/ExpressLRS",
        description="Base URL serving <ref>/targets.json (http loader)",
    )

    # Configuration source
    config_source: Literal["git", "http"] = Field(
        default="git",
        description="Which configuration source backend is active",
    )
    config_repository: str = Field(
        default="https://github.com/ExpressLRS/targets.git",
        description="Repository holding parameter definitions (git source)",
    )
    config_ref: str = Field(
        default="master",
        description="Branch or tag checked out from the parameter repository",
    )
    config_cache_dir: Path = Field(
        default_factory=_default_config_cache_dir,
        description="Local clone of the parameter repository",
    )
    config_endpoint: str = Field(
        default="https://artifactory.expresslrs.org/ExpressLRS",
        description="Base URL serving parameters.json (http source)",
    )

    # Discovery
    discovery_mode: Literal["live", "simulated"] = Field(
        default="live",
        description="Which discovery backend is active",
    )
    discovery_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds without an advertisement before a device is lost",
    )
    discovery_interval: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between discovery queries and expiry sweeps",
    )
    discovery_vendor: str = Field(
        default="elrs",
        description="TXT record vendor accepted by live discovery",
    )

    # Events
    event_buffer_size: int = Field(
        default=1000,
        ge=1,
        description="Per-subscriber event buffer (oldest events are dropped)",
    )

    # Timeouts (in seconds)
    toolchain_timeout: int = Field(
        default=45 * 60,
        ge=60,
        description="Ceiling for a single toolchain invocation",
    )
    cancel_grace_period: float = Field(
        default=10.0,
        gt=0,
        description="Grace period between soft stop and forced kill",
    )
    git_timeout: int = Field(
        default=300,
        ge=1,
        description="Timeout for git clone/fetch operations",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for HTTP requests",
    )

    # Updates
    update_repository: str = Field(
        default="ExpressLRS/ExpressLRS-Configurator",
        description="GitHub owner/name checked for new releases",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
