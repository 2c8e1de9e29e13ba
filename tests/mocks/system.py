"""Recording fakes for the host-system collaborators.

The fakes mirror the public surface of ``igor.system`` so steps can be
exercised without touching the machine running the tests.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple, Union

from igor.system.executor import CommandResult
from igor.system.packages import PackageManagerError, Repository


def success(stdout: str = "") -> CommandResult:
    return CommandResult(command="", exit_code=0, stdout=stdout)


def failure(stderr: str = "command failed", exit_code: int = 1) -> CommandResult:
    return CommandResult(command="", exit_code=exit_code, stderr=stderr)


class RecordedCall:
    """One executor invocation."""

    def __init__(self, cmd: str, args: Tuple[str, ...], elevated: bool, input_data: Optional[str]):
        self.cmd = cmd
        self.args = args
        self.elevated = elevated
        self.input_data = input_data

    @property
    def command_line(self) -> str:
        return " ".join((self.cmd,) + self.args)

    def __repr__(self) -> str:
        return f"RecordedCall({self.command_line!r}, elevated={self.elevated})"


class MockExecutor:
    """Command executor that records calls and returns canned results.

    Responses are looked up by full command line first (``"dkms status nvidia"``)
    and then by command name (``"dkms"``). A list of results is consumed in
    order, the last one repeating.
    """

    def __init__(self, default: Optional[CommandResult] = None):
        self.default = default or success()
        self.calls: List[RecordedCall] = []
        self._responses: Dict[str, List[CommandResult]] = {}
        self.available_commands: Set[str] = set()

    def set_response(self, key: str, result: Union[CommandResult, List[CommandResult]]) -> None:
        self._responses[key] = list(result) if isinstance(result, list) else [result]

    def _respond(self, cmd: str, args: Tuple[str, ...]) -> CommandResult:
        line = " ".join((cmd,) + args)
        for key in (line, cmd):
            queue = self._responses.get(key)
            if queue:
                result = queue.pop(0) if len(queue) > 1 else queue[0]
                break
        else:
            result = self.default
        return CommandResult(
            command=cmd,
            args=list(args),
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
        )

    def _record(self, cmd, args, elevated=False, input_data=None) -> CommandResult:
        self.calls.append(RecordedCall(cmd, tuple(args), elevated, input_data))
        return self._respond(cmd, tuple(args))

    def execute(self, cmd: str, *args: str, timeout=None) -> CommandResult:
        return self._record(cmd, args)

    def execute_elevated(self, cmd: str, *args: str, timeout=None) -> CommandResult:
        return self._record(cmd, args, elevated=True)

    def execute_with_input(self, input_data: str, cmd: str, *args: str, timeout=None, elevated=False):
        return self._record(cmd, args, elevated=elevated, input_data=input_data)

    def command_exists(self, cmd: str) -> bool:
        return cmd in self.available_commands

    @staticmethod
    def is_root() -> bool:
        return True

    def was_called(self, cmd: str) -> bool:
        return any(call.cmd == cmd for call in self.calls)

    def was_called_with(self, cmd: str, *args: str) -> bool:
        return any(call.cmd == cmd and call.args == args for call in self.calls)

    def calls_for(self, cmd: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.cmd == cmd]

    def command_lines(self) -> List[str]:
        return [call.command_line for call in self.calls]


class MockPackageManager:
    """Package manager that records operations.

    Set ``fail_install``, ``fail_remove``, ``fail_update`` or
    ``fail_add_repository`` to make the corresponding call raise.
    """

    name = "mock"

    def __init__(self):
        self.installed: List[str] = []
        self.install_calls: List[Tuple[str, ...]] = []
        self.remove_calls: List[Tuple[str, ...]] = []
        self.update_calls = 0
        self.repositories: List[Repository] = []
        self.removed_repositories: List[Repository] = []
        self.fail_install = False
        self.fail_install_on: Set[str] = set()
        self.fail_remove = False
        self.fail_update = False
        self.fail_add_repository = False
        self.fail_remove_repository = False

    def install(self, *packages: str) -> None:
        self.install_calls.append(packages)
        if self.fail_install or self.fail_install_on.intersection(packages):
            raise PackageManagerError("install failed", list(packages))
        self.installed.extend(packages)

    def remove(self, *packages: str) -> None:
        self.remove_calls.append(packages)
        if self.fail_remove:
            raise PackageManagerError("remove failed", list(packages))
        self.installed = [p for p in self.installed if p not in packages]

    def update(self) -> None:
        self.update_calls += 1
        if self.fail_update:
            raise PackageManagerError("update failed")

    def is_installed(self, package: str) -> bool:
        return package in self.installed

    def add_repository(self, repo: Repository) -> None:
        if self.fail_add_repository:
            raise PackageManagerError(f"cannot add {repo.name}")
        self.repositories.append(repo)

    def remove_repository(self, repo: Repository) -> None:
        if self.fail_remove_repository:
            raise PackageManagerError(f"cannot remove {repo.name}")
        self.removed_repositories.append(repo)
        self.repositories = [r for r in self.repositories if r.name != repo.name]

    def is_available(self) -> bool:
        return True


class InMemoryFileWriter:
    """File writer backed by a dict."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = dict(files or {})
        self.operations: List[Tuple[str, ...]] = []
        self.fail_write: Set[str] = set()
        self.fail_remove: Set[str] = set()

    def write_file(self, path: str, content: str) -> None:
        self.operations.append(("write", path))
        if path in self.fail_write:
            raise OSError(f"cannot write {path}")
        self.files[path] = content

    def remove_file(self, path: str) -> None:
        self.operations.append(("remove", path))
        if path in self.fail_remove:
            raise OSError(f"cannot remove {path}")
        self.files.pop(path, None)

    def copy(self, src: str, dst: str) -> None:
        self.operations.append(("copy", src, dst))
        self.files[dst] = self.files[src]

    def rename(self, src: str, dst: str) -> None:
        self.operations.append(("rename", src, dst))
        self.files[dst] = self.files.pop(src)

    def exists(self, path: str) -> bool:
        return path in self.files


class FakeKernelDetector:
    def __init__(
        self,
        version: str = "6.5.0-14-generic",
        headers: bool = True,
        loaded: Optional[List[str]] = None,
        secure_boot: bool = False,
    ):
        self.version = version
        self.headers = headers
        self.loaded = list(loaded or [])
        self.secure_boot = secure_boot

    def kernel_version(self) -> str:
        return self.version

    def headers_installed(self, kernel_version: Optional[str] = None) -> bool:
        return self.headers

    def loaded_modules(self) -> List[str]:
        return list(self.loaded)

    def is_module_loaded(self, name: str) -> bool:
        return name.replace("-", "_") in {m.replace("-", "_") for m in self.loaded}

    def secure_boot_enabled(self) -> bool:
        return self.secure_boot


class FakeNouveauDetector:
    def __init__(self, loaded: bool = False, blacklisted: bool = False):
        self.loaded = loaded
        self.blacklisted = blacklisted

    def is_loaded(self) -> bool:
        return self.loaded

    def is_blacklisted(self) -> bool:
        return self.blacklisted


class FakeDisplayDetector:
    def __init__(self, server: str = "xorg"):
        self.server = server

    def display_server(self) -> str:
        return self.server

    def is_wayland(self) -> bool:
        return self.server == "wayland"
