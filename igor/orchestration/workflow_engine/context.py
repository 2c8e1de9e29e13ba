"""
Shared execution context for installation workflows.

A ``Context`` is created once per run and passed by reference to every
step. It carries the cancellation and dry-run flags, a typed state store
that steps use for their "did something" markers, and the injected
collaborators (executor, package manager, detectors).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Engine-level state key any step may set when the host must be rebooted.
STATE_NEEDS_REBOOT = "needs_reboot"


class Report(ABC):
    """Structured report that can be stored in the context state."""

    @abstractmethod
    def summary(self) -> str:
        """One-line human-readable summary."""

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Plain-data representation for JSON output."""


class StateKind(Enum):
    """Kinds of values accepted by the state store."""

    BOOL = "bool"
    STRING = "string"
    STRING_LIST = "string_list"
    DURATION = "duration"
    REPORT = "report"


def state_kind(value: Any) -> StateKind:
    """Classify a state value.

    Raises:
        TypeError: If the value is outside the supported kinds
    """
    if isinstance(value, bool):
        return StateKind.BOOL
    if isinstance(value, str):
        return StateKind.STRING
    if isinstance(value, timedelta):
        return StateKind.DURATION
    if isinstance(value, Report):
        return StateKind.REPORT
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return StateKind.STRING_LIST
    raise TypeError(f"unsupported state value type: {type(value).__name__}")


class Context:
    """Central shared state for one installation run."""

    def __init__(
        self,
        *,
        executor=None,
        package_manager=None,
        distro=None,
        gpu_info=None,
        kernel_detector=None,
        display_detector=None,
        nouveau_detector=None,
        file_writer=None,
        dry_run: bool = False,
        driver_version: str = "",
        components: Optional[List[str]] = None,
    ):
        """Initialize context.

        Collaborators are optional here; a step that needs one reports its
        absence from ``validate``.

        Args:
            executor: Command executor
            package_manager: Package manager for the detected distribution
            distro: Detected distribution descriptor
            gpu_info: GPU inventory
            kernel_detector: Kernel and module state detector
            display_detector: Display server detector
            nouveau_detector: Nouveau driver status detector
            file_writer: Writer for configuration files
            dry_run: Report intended actions without mutating the system
            driver_version: Requested driver version ("" for default)
            components: Requested driver components
        """
        self.executor = executor
        self.package_manager = package_manager
        self.distro = distro
        self.gpu_info = gpu_info
        self.kernel_detector = kernel_detector
        self.display_detector = display_detector
        self.nouveau_detector = nouveau_detector
        self.file_writer = file_writer
        self.dry_run = dry_run
        self.driver_version = driver_version
        self.components = list(components or [])

        self._cancelled = threading.Event()
        self._state: Dict[str, Tuple[StateKind, Any]] = {}

    # Cancellation

    def cancel(self) -> None:
        """Request cooperative cancellation.

        Safe to call from a signal handler.
        """
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    # State store

    def set_state(self, key: str, value: Any) -> None:
        """Store a value under ``key``.

        Args:
            key: State key
            value: bool, str, list of str, timedelta or Report

        Raises:
            TypeError: If the value kind is not supported
        """
        kind = state_kind(value)
        if kind is StateKind.STRING_LIST:
            value = list(value)
        self._state[key] = (kind, value)

    def get_state(self, key: str) -> Tuple[Any, bool]:
        """Get a raw value.

        Returns:
            Tuple of (value, found); value is None when not found
        """
        entry = self._state.get(key)
        if entry is None:
            return None, False
        kind, value = entry
        if kind is StateKind.STRING_LIST:
            value = list(value)
        return value, True

    def _get_typed(self, key: str, kind: StateKind) -> Tuple[Any, bool]:
        entry = self._state.get(key)
        if entry is None or entry[0] is not kind:
            return None, False
        return entry[1], True

    def get_state_bool(self, key: str) -> bool:
        value, ok = self._get_typed(key, StateKind.BOOL)
        return value if ok else False

    def get_state_string(self, key: str) -> str:
        value, ok = self._get_typed(key, StateKind.STRING)
        return value if ok else ""

    def get_state_list(self, key: str) -> List[str]:
        value, ok = self._get_typed(key, StateKind.STRING_LIST)
        return list(value) if ok else []

    def get_state_duration(self, key: str) -> timedelta:
        value, ok = self._get_typed(key, StateKind.DURATION)
        return value if ok else timedelta(0)

    def get_state_report(self, key: str) -> Optional[Report]:
        value, ok = self._get_typed(key, StateKind.REPORT)
        return value if ok else None

    def has_state(self, key: str) -> bool:
        return key in self._state

    def delete_state(self, key: str) -> None:
        """Remove a state marker; missing keys are ignored."""
        self._state.pop(key, None)

    def clear_state(self) -> None:
        self._state.clear()

    def state_keys(self) -> List[str]:
        return list(self._state)

    # Collaborator checks

    def has_executor(self) -> bool:
        return self.executor is not None

    def has_package_manager(self) -> bool:
        return self.package_manager is not None

    def has_distro(self) -> bool:
        return self.distro is not None

    def has_gpu_info(self) -> bool:
        return self.gpu_info is not None

    def needs_reboot(self) -> bool:
        return self.get_state_bool(STATE_NEEDS_REBOOT)
