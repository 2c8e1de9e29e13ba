"""Test doubles for host-system collaborators."""

from .system import (
    FakeDisplayDetector,
    FakeKernelDetector,
    FakeNouveauDetector,
    InMemoryFileWriter,
    MockExecutor,
    MockPackageManager,
    failure,
    success,
)

__all__ = [
    "FakeDisplayDetector",
    "FakeKernelDetector",
    "FakeNouveauDetector",
    "InMemoryFileWriter",
    "MockExecutor",
    "MockPackageManager",
    "failure",
    "success",
]
