"""Detectors for kernel, nouveau and display server state."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

MODPROBE_DIR = Path("/etc/modprobe.d")
MODULES_DIR = Path("/lib/modules")


def parse_lsmod(output: str) -> List[str]:
    """Module names from ``lsmod`` output (header line skipped)."""
    modules = []
    for line in output.splitlines()[1:]:
        fields = line.split()
        if fields:
            modules.append(fields[0])
    return modules


class KernelDetector:
    """Kernel version, headers and loaded module queries."""

    def __init__(self, executor, modules_dir: Path = MODULES_DIR):
        self.executor = executor
        self.modules_dir = Path(modules_dir)

    def kernel_version(self) -> str:
        result = self.executor.execute("uname", "-r")
        return result.output() if result.succeeded else ""

    def headers_installed(self, kernel_version: Optional[str] = None) -> bool:
        version = kernel_version or self.kernel_version()
        return bool(version) and (self.modules_dir / version / "build").exists()

    def loaded_modules(self) -> List[str]:
        result = self.executor.execute("lsmod")
        if result.failed:
            logger.warning(f"lsmod failed: {result.error_message()}")
            return []
        return parse_lsmod(result.stdout)

    def is_module_loaded(self, name: str) -> bool:
        # lsmod reports dashes as underscores
        normalized = name.replace("-", "_")
        return normalized in {m.replace("-", "_") for m in self.loaded_modules()}

    def secure_boot_enabled(self) -> bool:
        result = self.executor.execute("mokutil", "--sb-state")
        return result.succeeded and "secureboot enabled" in result.stdout.lower()


class NouveauDetector:
    """Nouveau driver status."""

    def __init__(self, executor, modprobe_dir: Path = MODPROBE_DIR):
        self.executor = executor
        self.modprobe_dir = Path(modprobe_dir)

    def is_loaded(self) -> bool:
        result = self.executor.execute("lsmod")
        return result.succeeded and "nouveau" in parse_lsmod(result.stdout)

    def is_blacklisted(self) -> bool:
        if not self.modprobe_dir.is_dir():
            return False
        for conf in sorted(self.modprobe_dir.glob("*.conf")):
            try:
                content = conf.read_text()
            except OSError as e:
                logger.debug(f"Cannot read {conf}: {e}")
                continue
            for line in content.splitlines():
                if line.split("#", 1)[0].split() == ["blacklist", "nouveau"]:
                    return True
        return False


class DisplayDetector:
    """Display server detection from the session environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def display_server(self) -> str:
        """Returns "wayland", "xorg" or "unknown"."""
        session = self.environ.get("XDG_SESSION_TYPE", "").lower()
        if session == "wayland" or self.environ.get("WAYLAND_DISPLAY"):
            return "wayland"
        if session == "x11" or self.environ.get("DISPLAY"):
            return "xorg"
        return "unknown"

    def is_wayland(self) -> bool:
        return self.display_server() == "wayland"
