"""Shared fixtures for the installer test suite."""

import pytest

from igor.orchestration.workflow_engine.context import Context
from igor.system.distro import Distribution, DistroFamily
from igor.system.gpu import GPUDevice, GPUInfo
from igor.utils.logging_factory import LoggingFactory

from tests.mocks import (
    FakeDisplayDetector,
    FakeKernelDetector,
    FakeNouveauDetector,
    InMemoryFileWriter,
    MockExecutor,
    MockPackageManager,
)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    LoggingFactory.reset()


@pytest.fixture
def executor():
    return MockExecutor()


@pytest.fixture
def package_manager():
    return MockPackageManager()


@pytest.fixture
def file_writer():
    return InMemoryFileWriter()


@pytest.fixture
def kernel_detector():
    return FakeKernelDetector()


@pytest.fixture
def nouveau_detector():
    return FakeNouveauDetector()


@pytest.fixture
def ubuntu():
    return Distribution(
        id="ubuntu",
        name="Ubuntu",
        version_id="22.04",
        version_codename="jammy",
        pretty_name="Ubuntu 22.04.4 LTS",
        family=DistroFamily.DEBIAN,
        id_like=["debian"],
    )


@pytest.fixture
def debian():
    return Distribution(
        id="debian", name="Debian GNU/Linux", version_id="12",
        version_codename="bookworm", family=DistroFamily.DEBIAN,
    )


@pytest.fixture
def fedora():
    return Distribution(id="fedora", name="Fedora Linux", version_id="40", family=DistroFamily.RHEL)


@pytest.fixture
def arch():
    return Distribution(id="arch", name="Arch Linux", family=DistroFamily.ARCH)


@pytest.fixture
def unknown_distro():
    return Distribution(id="plan9")


@pytest.fixture
def gpu_info():
    return GPUInfo(
        devices=[GPUDevice("01:00.0", "10de", "2684", "NVIDIA Corporation AD102 [GeForce RTX 4090]")]
    )


@pytest.fixture
def make_context(executor, package_manager, file_writer, kernel_detector, nouveau_detector, ubuntu, gpu_info):
    """Factory for contexts wired to the shared fakes; keyword arguments override them."""

    def _make(**overrides):
        values = dict(
            executor=executor,
            package_manager=package_manager,
            distro=ubuntu,
            gpu_info=gpu_info,
            kernel_detector=kernel_detector,
            display_detector=FakeDisplayDetector(),
            nouveau_detector=nouveau_detector,
            file_writer=file_writer,
            components=["driver"],
        )
        values.update(overrides)
        return Context(**values)

    return _make


@pytest.fixture
def ctx(make_context):
    return make_context()
