"""Linux distribution detection from os-release."""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

OS_RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))


class DistroFamily(Enum):
    """Distribution families sharing a package manager and packaging layout."""

    DEBIAN = "debian"
    RHEL = "rhel"
    ARCH = "arch"
    SUSE = "suse"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


_FAMILY_IDS = {
    DistroFamily.DEBIAN: {
        "debian", "ubuntu", "linuxmint", "pop", "elementary", "zorin",
        "kali", "mx", "lmde", "raspbian", "devuan",
    },
    DistroFamily.RHEL: {
        "fedora", "rhel", "centos", "rocky", "almalinux", "ol", "amzn",
        "scientific", "oracle",
    },
    DistroFamily.ARCH: {
        "arch", "manjaro", "endeavouros", "garuda", "artix", "arcolinux",
        "archcraft", "archbang",
    },
    DistroFamily.SUSE: {
        "opensuse", "opensuse-leap", "opensuse-tumbleweed", "sles", "suse",
    },
}


def family_for(distro_id: str, id_like: Optional[List[str]] = None) -> DistroFamily:
    """Resolve the family from ID, falling back to ID_LIKE entries."""
    for candidate in [distro_id, *(id_like or [])]:
        candidate = candidate.lower()
        for family, ids in _FAMILY_IDS.items():
            if candidate in ids:
                return family
    return DistroFamily.UNKNOWN


@dataclass
class Distribution:
    """Detected distribution identity."""

    id: str
    name: str = ""
    version_id: str = ""
    version_codename: str = ""
    pretty_name: str = ""
    family: DistroFamily = DistroFamily.UNKNOWN
    id_like: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.pretty_name:
            return self.pretty_name
        if self.name:
            return f"{self.name} {self.version_id}".strip()
        return self.id or "Unknown Distribution"

    @property
    def major_version(self) -> str:
        version = self.version_id
        for sep in (".", "-", "_"):
            index = version.find(sep)
            if index > 0:
                return version[:index]
        return version

    def is_rolling(self) -> bool:
        return self.family is DistroFamily.ARCH or "tumbleweed" in self.id

    @classmethod
    def from_os_release(cls, fields: Dict[str, str]) -> Distribution:
        distro_id = fields.get("ID", "").lower()
        id_like = fields.get("ID_LIKE", "").split()
        return cls(
            id=distro_id,
            name=fields.get("NAME", ""),
            version_id=fields.get("VERSION_ID", ""),
            version_codename=fields.get("VERSION_CODENAME", ""),
            pretty_name=fields.get("PRETTY_NAME", ""),
            family=family_for(distro_id, id_like),
            id_like=id_like,
        )


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse os-release KEY=value lines, honoring shell quoting."""
    fields: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        fields[key.strip()] = parts[0] if parts else ""
    return fields


def detect_distribution(paths: Optional[List[Union[str, Path]]] = None) -> Distribution:
    """Detect the running distribution.

    Args:
        paths: os-release candidates, first existing file wins

    Returns:
        Distribution (family UNKNOWN when nothing could be read)
    """
    for path in [Path(p) for p in (paths or OS_RELEASE_PATHS)]:
        if path.is_file():
            logger.debug(f"Reading distribution info from {path}")
            distro = Distribution.from_os_release(parse_os_release(path.read_text()))
            logger.info(f"Detected distribution: {distro} (family: {distro.family})")
            return distro

    logger.warning("No os-release file found; distribution is unknown")
    return Distribution(id="unknown")
