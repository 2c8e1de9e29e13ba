"""Installer settings.

Settings come from (highest precedence first) explicit overrides such as
command-line flags, ``IGOR_*`` environment variables and an optional ``.env``
file.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from ..errors import ConfigurationError
from ..orchestration.builder import BuilderConfig
from ..steps.dkms import DEFAULT_DKMS_TIMEOUT
from ..system.nvidia import Component
from ..system.validator import DEFAULT_MIN_DISK_SPACE_MB

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class InstallerSettings(BaseSettings):
    """Installation options."""

    dry_run: bool = False
    driver_version: str = Field("", description="Driver branch such as 550, empty for the default")
    components: List[str] = Field(default_factory=lambda: [Component.DRIVER.value])
    additional_packages: List[str] = Field(default_factory=list)

    skip_validation: bool = False
    skip_repository: bool = False
    skip_nouveau: bool = False
    skip_dkms: bool = False
    skip_module_load: bool = False
    skip_xorg_config: bool = False
    skip_verification: bool = False
    skip_initramfs: bool = False
    skip_if_wayland: bool = True

    required_disk_mb: int = Field(DEFAULT_MIN_DISK_SPACE_MB, ge=0)
    dkms_timeout: float = Field(DEFAULT_DKMS_TIMEOUT, gt=0)

    log_dir: Path = Field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    log_to_file: bool = True
    json_output: bool = False

    @field_validator("driver_version")
    @classmethod
    def validate_driver_version(cls, v: str) -> str:
        """Accept a driver branch ("550") or full version ("550.54.14")."""
        v = v.strip()
        if v and not all(part.isdigit() for part in v.split(".")):
            raise ValueError(f"invalid driver version: {v!r}")
        return v

    @field_validator("components")
    @classmethod
    def validate_components(cls, v: List[str]) -> List[str]:
        unknown = [c for c in v if not Component.is_valid(c)]
        if unknown:
            valid = ", ".join(c.value for c in Component)
            raise ValueError(f"unknown component(s): {', '.join(unknown)}; valid: {valid}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return v

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)

    class Config:
        env_prefix = "IGOR_"
        env_file = ".env"
        env_file_encoding = "utf-8"


class ConfigurationManager:
    """Lazily loads and validates ``InstallerSettings``.

    Usage:
        config = ConfigurationManager(overrides={"dry_run": True})
        builder_config = config.to_builder_config()
    """

    def __init__(self, env_file: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in current directory)
            overrides: Values that take precedence over the environment
        """
        self.env_file = env_file or Path(".env")
        self.overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        self._settings: Optional[InstallerSettings] = None

    @property
    def settings(self) -> InstallerSettings:
        """Load settings on first access.

        Raises:
            ConfigurationError: If a value fails validation
        """
        if self._settings is None:
            try:
                if self.env_file.exists():
                    self._settings = InstallerSettings(_env_file=str(self.env_file), **self.overrides)
                else:
                    self._settings = InstallerSettings(_env_file=None, **self.overrides)
            except ValidationError as e:
                raise ConfigurationError(f"Configuration validation failed: {e}") from e
            logger.debug(f"Loaded settings: {self._settings.model_dump()}")
        return self._settings

    def validate(self) -> None:
        """Load settings and check cross-field constraints.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        settings = self.settings
        if not settings.driver_version and not settings.components and not settings.additional_packages:
            raise ConfigurationError(
                "nothing to install: set a driver version, components or additional packages"
            )

    def to_builder_config(self) -> BuilderConfig:
        s = self.settings
        return BuilderConfig(
            skip_validation=s.skip_validation,
            skip_repository=s.skip_repository,
            skip_nouveau=s.skip_nouveau,
            skip_dkms=s.skip_dkms,
            skip_module_load=s.skip_module_load,
            skip_xorg_config=s.skip_xorg_config,
            skip_verification=s.skip_verification,
            skip_initramfs=s.skip_initramfs,
            skip_if_wayland=s.skip_if_wayland,
            required_disk_mb=s.required_disk_mb,
            dkms_timeout=s.dkms_timeout,
            additional_packages=list(s.additional_packages),
        )
