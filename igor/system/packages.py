"""Package manager abstraction over apt, dnf, pacman and zypper.

Each manager translates install/remove/update/repository operations into
commands run through a ``CommandExecutor`` and raises
``PackageManagerError`` when the command reports failure.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Type

from ..errors import OperationError
from .distro import Distribution, DistroFamily

logger = logging.getLogger(__name__)

APT_SOURCES_DIR = "/etc/apt/sources.list.d"
APT_KEYRINGS_DIR = "/usr/share/keyrings"
YUM_REPOS_DIR = "/etc/yum.repos.d"


class PackageManagerError(OperationError):
    """A package manager command failed."""

    def __init__(self, message: str, packages: Optional[List[str]] = None):
        super().__init__(message)
        self.packages = list(packages or [])


@dataclass
class Repository:
    """Package repository definition."""

    name: str
    url: str
    type: str = ""
    gpg_key: str = ""
    distribution: str = ""
    components: List[str] = field(default_factory=list)
    enabled: bool = True

    def __str__(self) -> str:
        status = "enabled" if self.enabled else "disabled"
        return f"{self.name} ({self.url}) [{status}]"

    @property
    def is_ppa(self) -> bool:
        return self.type == "ppa" or self.url.startswith("ppa:")


class PackageManager(ABC):
    """Common interface of the distribution package managers."""

    name = ""
    family = DistroFamily.UNKNOWN

    def __init__(self, executor):
        self.executor = executor

    @abstractmethod
    def install(self, *packages: str) -> None:
        """Install packages non-interactively."""

    @abstractmethod
    def remove(self, *packages: str) -> None:
        """Remove packages non-interactively."""

    @abstractmethod
    def update(self) -> None:
        """Refresh package metadata."""

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        pass

    @abstractmethod
    def add_repository(self, repo: Repository) -> None:
        pass

    @abstractmethod
    def remove_repository(self, repo: Repository) -> None:
        pass

    def is_available(self) -> bool:
        return self.executor.command_exists(self.name)

    def _run(self, action: str, cmd: str, *args: str, packages: Optional[List[str]] = None):
        result = self.executor.execute_elevated(cmd, *args)
        if result.failed:
            raise PackageManagerError(
                f"{self.name} {action} failed (exit code {result.exit_code}): "
                f"{result.error_message()}",
                packages=packages,
            )
        return result


class AptManager(PackageManager):
    """Debian/Ubuntu package manager."""

    name = "apt"
    family = DistroFamily.DEBIAN

    def _apt_get(self, action: str, *args: str, packages: Optional[List[str]] = None):
        return self._run(
            action, "env", "DEBIAN_FRONTEND=noninteractive", "apt-get", *args, packages=packages
        )

    def install(self, *packages: str) -> None:
        if packages:
            self._apt_get("install", "install", "-y", "-q", *packages, packages=list(packages))

    def remove(self, *packages: str) -> None:
        if packages:
            self._apt_get("remove", "remove", "-y", "-q", *packages, packages=list(packages))

    def update(self) -> None:
        self._apt_get("update", "update", "-q")

    def is_installed(self, package: str) -> bool:
        result = self.executor.execute("dpkg-query", "-W", "-f=${Status}", package)
        return result.succeeded and "install ok installed" in result.stdout

    def add_repository(self, repo: Repository) -> None:
        if repo.is_ppa:
            self._run("add-apt-repository", "add-apt-repository", "-y", repo.url)
            return

        signed_by = ""
        if repo.gpg_key:
            keyring = f"{APT_KEYRINGS_DIR}/{repo.name}.gpg"
            self._run(
                "key import",
                "sh",
                "-c",
                f"curl -fsSL {repo.gpg_key} | gpg --dearmor --yes -o {keyring}",
            )
            signed_by = f" [signed-by={keyring}]"

        suite = repo.distribution or "/"
        line = f"deb{signed_by} {repo.url} {suite} {' '.join(repo.components)}".rstrip() + "\n"
        result = self.executor.execute_with_input(
            line, "tee", f"{APT_SOURCES_DIR}/{repo.name}.list", elevated=True
        )
        if result.failed:
            raise PackageManagerError(f"failed to write source list: {result.error_message()}")

    def remove_repository(self, repo: Repository) -> None:
        if repo.is_ppa:
            self._run("add-apt-repository --remove", "add-apt-repository", "--remove", "-y", repo.url)
            return
        self._run("repository removal", "rm", "-f", f"{APT_SOURCES_DIR}/{repo.name}.list")
        if repo.gpg_key:
            self._run("key removal", "rm", "-f", f"{APT_KEYRINGS_DIR}/{repo.name}.gpg")


class DnfManager(PackageManager):
    """Fedora/RHEL package manager."""

    name = "dnf"
    family = DistroFamily.RHEL

    def install(self, *packages: str) -> None:
        if packages:
            self._run("install", "dnf", "install", "-y", *packages, packages=list(packages))

    def remove(self, *packages: str) -> None:
        if packages:
            self._run("remove", "dnf", "remove", "-y", *packages, packages=list(packages))

    def update(self) -> None:
        self._run("makecache", "dnf", "makecache")

    def is_installed(self, package: str) -> bool:
        return self.executor.execute("rpm", "-q", package).succeeded

    def add_repository(self, repo: Repository) -> None:
        if repo.url.endswith(".rpm"):
            # Release packages such as RPM Fusion install their own .repo files
            self._run("install", "dnf", "install", "-y", repo.url)
        else:
            self._run("config-manager", "dnf", "config-manager", "--add-repo", repo.url)
        if repo.gpg_key:
            self._run("key import", "rpm", "--import", repo.gpg_key)

    def remove_repository(self, repo: Repository) -> None:
        if repo.url.endswith(".rpm"):
            self._run("remove", "dnf", "remove", "-y", f"{repo.name}-release")
            return
        repo_file = repo.url.rstrip("/").rsplit("/", 1)[-1]
        if not repo_file.endswith(".repo"):
            repo_file = f"{repo.name}.repo"
        self._run("repository removal", "rm", "-f", f"{YUM_REPOS_DIR}/{repo_file}")


class PacmanManager(PackageManager):
    """Arch Linux package manager. NVIDIA packages ship in the official repositories."""

    name = "pacman"
    family = DistroFamily.ARCH

    def install(self, *packages: str) -> None:
        if packages:
            self._run("install", "pacman", "-S", "--noconfirm", "--needed", *packages,
                      packages=list(packages))

    def remove(self, *packages: str) -> None:
        if packages:
            self._run("remove", "pacman", "-Rns", "--noconfirm", *packages, packages=list(packages))

    def update(self) -> None:
        self._run("sync", "pacman", "-Sy")

    def is_installed(self, package: str) -> bool:
        return self.executor.execute("pacman", "-Q", package).succeeded

    def add_repository(self, repo: Repository) -> None:
        raise PackageManagerError(
            f"adding repository {repo.name} is not supported for pacman; edit /etc/pacman.conf"
        )

    def remove_repository(self, repo: Repository) -> None:
        raise PackageManagerError(
            f"removing repository {repo.name} is not supported for pacman; edit /etc/pacman.conf"
        )


class ZypperManager(PackageManager):
    """openSUSE/SLES package manager."""

    name = "zypper"
    family = DistroFamily.SUSE

    def install(self, *packages: str) -> None:
        if packages:
            self._run("install", "zypper", "--non-interactive", "install", *packages,
                      packages=list(packages))

    def remove(self, *packages: str) -> None:
        if packages:
            self._run("remove", "zypper", "--non-interactive", "remove", *packages,
                      packages=list(packages))

    def update(self) -> None:
        self._run("refresh", "zypper", "--non-interactive", "--gpg-auto-import-keys", "refresh")

    def is_installed(self, package: str) -> bool:
        return self.executor.execute("rpm", "-q", package).succeeded

    def add_repository(self, repo: Repository) -> None:
        self._run("addrepo", "zypper", "--non-interactive", "addrepo", "--refresh",
                  repo.url, repo.name)

    def remove_repository(self, repo: Repository) -> None:
        self._run("removerepo", "zypper", "--non-interactive", "removerepo", repo.name)


_MANAGERS: Dict[DistroFamily, Type[PackageManager]] = {
    DistroFamily.DEBIAN: AptManager,
    DistroFamily.RHEL: DnfManager,
    DistroFamily.ARCH: PacmanManager,
    DistroFamily.SUSE: ZypperManager,
}


def manager_for(distro: Distribution, executor) -> PackageManager:
    """Create the package manager for a distribution.

    Raises:
        PackageManagerError: If the family has no supported manager
    """
    manager_class = _MANAGERS.get(distro.family)
    if manager_class is None:
        raise PackageManagerError(f"unsupported distribution family: {distro.family}")
    logger.debug(f"Using {manager_class.name} for {distro}")
    return manager_class(executor)
