"""Installer configuration."""

from .settings import ConfigurationManager, InstallerSettings

__all__ = ["ConfigurationManager", "InstallerSettings"]
