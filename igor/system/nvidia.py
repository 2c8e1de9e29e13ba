"""NVIDIA package and repository catalog per distribution family."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .distro import Distribution, DistroFamily
from .packages import Repository

CUDA_REPO_BASE_URL = "https://developer.download.nvidia.com/compute/cuda/repos"
CUDA_GPG_KEY_URL = CUDA_REPO_BASE_URL + "/{path}/x86_64/3bf863cc.pub"
UBUNTU_GRAPHICS_DRIVERS_PPA = "ppa:graphics-drivers/ppa"
RPMFUSION_NONFREE_FEDORA_URL = (
    "https://download1.rpmfusion.org/nonfree/fedora/rpmfusion-nonfree-release-{version}.noarch.rpm"
)
RPMFUSION_NONFREE_EL_URL = (
    "https://download1.rpmfusion.org/nonfree/el/rpmfusion-nonfree-release-{version}.noarch.rpm"
)
OPENSUSE_TUMBLEWEED_URL = "https://download.nvidia.com/opensuse/tumbleweed"
OPENSUSE_LEAP_URL = "https://download.nvidia.com/opensuse/leap/{version}"

SUPPORTED_DRIVER_VERSIONS = ["550", "545", "535", "525", "470"]

_UBUNTU_LIKE = {"ubuntu", "pop", "linuxmint"}

_UBUNTU_CUDA_REPOS = {
    "noble": "ubuntu2404",
    "jammy": "ubuntu2204",
    "focal": "ubuntu2004",
    "bionic": "ubuntu1804",
    "24.04": "ubuntu2404",
    "22.04": "ubuntu2204",
    "20.04": "ubuntu2004",
    "18.04": "ubuntu1804",
}

_DEBIAN_CUDA_REPOS = {
    "bookworm": "debian12",
    "bullseye": "debian11",
    "buster": "debian10",
    "12": "debian12",
    "11": "debian11",
    "10": "debian10",
}


class Component(Enum):
    """Installable driver components."""

    DRIVER = "driver"
    DRIVER_DKMS = "driver-dkms"
    CUDA = "cuda"
    CUDNN = "cudnn"
    NVCC = "nvcc"
    UTILS = "utils"
    SETTINGS = "settings"
    OPENCL = "opencl"
    VULKAN = "vulkan"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in {c.value for c in cls}


@dataclass
class PackageSet:
    """Package names for each component on one distribution family."""

    family: DistroFamily
    components: Dict[Component, List[str]] = field(default_factory=dict)
    driver_version_pattern: str = ""
    dkms_version_pattern: str = ""
    notes: str = ""

    def packages(self, component: Component) -> List[str]:
        return list(self.components.get(component, []))

    def packages_for_version(self, version: str) -> List[str]:
        """Driver packages for a specific branch, e.g. ``"550"``."""
        version = version.strip()
        if not self.driver_version_pattern or not version:
            return self.packages(Component.DRIVER)
        return [self.driver_version_pattern.format(version=version)]

    def dkms_packages_for_version(self, version: str) -> List[str]:
        version = version.strip()
        if not self.dkms_version_pattern or not version:
            return self.packages(Component.DRIVER_DKMS)
        return [self.dkms_version_pattern.format(version=version)]


_PACKAGE_SETS = {
    DistroFamily.DEBIAN: PackageSet(
        family=DistroFamily.DEBIAN,
        components={
            Component.DRIVER: ["nvidia-driver-550"],
            Component.DRIVER_DKMS: ["nvidia-dkms-550"],
            Component.UTILS: ["nvidia-utils-550"],
            Component.SETTINGS: ["nvidia-settings"],
            Component.CUDA: ["nvidia-cuda-toolkit"],
            Component.NVCC: ["nvidia-cuda-toolkit"],
            Component.CUDNN: ["libcudnn8", "libcudnn8-dev"],
            Component.OPENCL: ["nvidia-opencl-icd"],
            Component.VULKAN: ["nvidia-vulkan-icd"],
        },
        driver_version_pattern="nvidia-driver-{version}",
        dkms_version_pattern="nvidia-dkms-{version}",
        notes="Ubuntu/Debian use the graphics-drivers PPA or official CUDA repository",
    ),
    DistroFamily.RHEL: PackageSet(
        family=DistroFamily.RHEL,
        components={
            Component.DRIVER: ["akmod-nvidia", "xorg-x11-drv-nvidia"],
            Component.DRIVER_DKMS: ["akmod-nvidia"],
            Component.UTILS: ["xorg-x11-drv-nvidia-libs"],
            Component.SETTINGS: ["nvidia-settings"],
            Component.CUDA: ["cuda"],
            Component.NVCC: ["cuda-compiler"],
            Component.CUDNN: ["cudnn"],
            Component.OPENCL: ["xorg-x11-drv-nvidia-cuda-libs"],
            Component.VULKAN: ["vulkan-loader", "xorg-x11-drv-nvidia-vulkan"],
        },
        notes="Requires RPM Fusion nonfree repository",
    ),
    DistroFamily.ARCH: PackageSet(
        family=DistroFamily.ARCH,
        components={
            Component.DRIVER: ["nvidia"],
            Component.DRIVER_DKMS: ["nvidia-dkms"],
            Component.UTILS: ["nvidia-utils"],
            Component.SETTINGS: ["nvidia-settings"],
            Component.CUDA: ["cuda"],
            Component.NVCC: ["cuda"],
            Component.CUDNN: ["cudnn"],
            Component.OPENCL: ["opencl-nvidia"],
            Component.VULKAN: ["nvidia-utils"],
        },
        notes="Uses official Arch repositories, no extra repository needed",
    ),
    DistroFamily.SUSE: PackageSet(
        family=DistroFamily.SUSE,
        components={
            Component.DRIVER: ["nvidia-driver-G06-kmp-default"],
            Component.DRIVER_DKMS: ["nvidia-driver-G06-kmp-default"],
            Component.UTILS: ["nvidia-driver-G06"],
            Component.SETTINGS: ["nvidia-settings"],
            Component.CUDA: ["cuda"],
            Component.NVCC: ["cuda"],
            Component.CUDNN: ["libcudnn8", "libcudnn8-devel"],
            Component.OPENCL: ["nvidia-driver-G06"],
            Component.VULKAN: ["nvidia-driver-G06"],
        },
        notes="Uses official NVIDIA openSUSE repository",
    ),
}


def package_set(distro: Distribution) -> Optional[PackageSet]:
    return _PACKAGE_SETS.get(distro.family)


def _lookup(table: Dict[str, str], keys: List[str], default: str) -> str:
    for key in keys:
        if key and key.lower() in table:
            return table[key.lower()]
    return default


def repository_for(distro: Distribution) -> Optional[Repository]:
    """Driver repository for a distribution.

    Returns:
        Repository, or None when the family ships the driver in its
        default repositories

    Raises:
        ValueError: If the family is unsupported
    """
    family = distro.family
    if family is DistroFamily.DEBIAN:
        if distro.id in _UBUNTU_LIKE:
            return Repository(
                name="graphics-drivers-ppa", url=UBUNTU_GRAPHICS_DRIVERS_PPA, type="ppa"
            )
        path = _lookup(
            _DEBIAN_CUDA_REPOS, [distro.version_codename, distro.major_version], "debian12"
        )
        return _cuda_repository(path, "deb")

    if family is DistroFamily.RHEL:
        if distro.id == "fedora":
            url = RPMFUSION_NONFREE_FEDORA_URL.format(version=distro.version_id or "40")
        else:
            url = RPMFUSION_NONFREE_EL_URL.format(version=distro.major_version or "9")
        return Repository(name="rpmfusion-nonfree", url=url, type="rpm")

    if family is DistroFamily.ARCH:
        return None

    if family is DistroFamily.SUSE:
        if "tumbleweed" in distro.id or "tumbleweed" in distro.name.lower():
            url = OPENSUSE_TUMBLEWEED_URL
        else:
            url = OPENSUSE_LEAP_URL.format(version=distro.version_id or "15.5")
        return Repository(name="nvidia", url=url, type="rpm")

    raise ValueError(f"unsupported distribution family: {family}")


def cuda_repository_for(distro: Distribution) -> Optional[Repository]:
    """CUDA repository for a distribution (None on Arch)."""
    if distro.family is DistroFamily.DEBIAN:
        if distro.id in _UBUNTU_LIKE:
            path = _lookup(
                _UBUNTU_CUDA_REPOS, [distro.version_codename, distro.version_id], "ubuntu2204"
            )
        else:
            path = _lookup(
                _DEBIAN_CUDA_REPOS, [distro.version_codename, distro.major_version], "debian12"
            )
        return _cuda_repository(path, "deb")
    if distro.family is DistroFamily.RHEL:
        if distro.id == "fedora":
            path = f"fedora{distro.version_id or '40'}"
        else:
            path = f"rhel{distro.major_version or '9'}"
        return _cuda_repository(path, "rpm")
    if distro.family is DistroFamily.ARCH:
        return None
    return repository_for(distro)


def _cuda_repository(path: str, repo_type: str) -> Repository:
    return Repository(
        name="nvidia-cuda",
        url=f"{CUDA_REPO_BASE_URL}/{path}/x86_64/" + ("" if repo_type == "deb" else f"cuda-{path}.repo"),
        type=repo_type,
        gpg_key=CUDA_GPG_KEY_URL.format(path=path),
        distribution="/",
    )
