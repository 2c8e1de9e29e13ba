"""Command-line entry point for the NVIDIA driver installer."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .config.settings import ConfigurationManager, InstallerSettings
from .errors import ConfigurationError
from .orchestration.builder import WorkflowBuilder
from .orchestration.orchestrator import Orchestrator
from .orchestration.workflow_engine.context import Context
from .orchestration.workflow_engine.steps import WorkflowStatus
from .system.detectors import DisplayDetector, KernelDetector, NouveauDetector
from .system.distro import Distribution, detect_distribution
from .system.executor import CommandExecutor
from .system.files import FileWriter
from .system.gpu import detect_gpus
from .system.nvidia import Component
from .system.packages import manager_for
from .ui.console import ConsoleManager
from .utils.logging_factory import LoggingFactory

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

# Flags that map one-to-one onto InstallerSettings fields
_SKIP_FLAGS = (
    "validation",
    "repository",
    "nouveau",
    "dkms",
    "module_load",
    "xorg_config",
    "verification",
    "initramfs",
)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="igor",
        description="Install NVIDIA drivers with automatic rollback on failure",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  # Show what would run on this machine
  igor plan

  # Install the 550 driver branch with CUDA
  sudo igor install --driver-version 550 --component driver --component cuda

  # Walk through the installation without changing anything
  igor install --dry-run
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-output",
        action="store_true",
        default=None,
        help="Emit machine-readable JSON lines on stdout",
    )
    parser.add_argument("--env-file", type=Path, help="Settings file (default: .env)")
    parser.add_argument("--log-dir", type=Path, help="Directory for the run log")

    options = argparse.ArgumentParser(add_help=False)
    options.add_argument("--driver-version", help="Driver branch, e.g. 550")
    options.add_argument(
        "--component",
        dest="components",
        action="append",
        choices=[c.value for c in Component],
        help="Component to install (repeatable, default: driver)",
    )
    options.add_argument(
        "--package",
        dest="additional_packages",
        action="append",
        help="Additional package to install (repeatable)",
    )
    options.add_argument("--required-disk-mb", type=int, help="Required free disk space in MB")
    for name in _SKIP_FLAGS:
        options.add_argument(
            f"--skip-{name.replace('_', '-')}",
            dest=f"skip_{name}",
            action="store_true",
            default=None,
            help=f"Skip the {name.replace('_', ' ')} stage",
        )
    options.add_argument(
        "--xorg-on-wayland",
        dest="skip_if_wayland",
        action="store_false",
        default=None,
        help="Write the X.org configuration even in a Wayland session",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands", required=True)

    install_parser = subparsers.add_parser(
        "install",
        parents=[options],
        help="Install the NVIDIA driver",
        description="Run the installation workflow; completed steps are rolled back on failure",
    )
    install_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Report intended actions without changing the system",
    )

    subparsers.add_parser(
        "plan",
        parents=[options],
        help="Show the installation steps for this system",
        description="Print the ordered step list without executing anything",
    )
    return parser


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Values given on the command line, keyed by settings field."""
    keys = [
        "driver_version",
        "components",
        "additional_packages",
        "required_disk_mb",
        "dry_run",
        "json_output",
        "log_dir",
        "skip_if_wayland",
    ] + [f"skip_{name}" for name in _SKIP_FLAGS]
    overrides = {}
    for key in keys:
        value = getattr(args, key, None)
        if value is not None:
            overrides[key] = value
    return overrides


def build_context(
    settings: InstallerSettings,
    distro: Distribution,
    executor: Optional[CommandExecutor] = None,
) -> Context:
    """Detect the host and assemble the execution context."""
    executor = executor or CommandExecutor()
    return Context(
        executor=executor,
        package_manager=manager_for(distro, executor),
        distro=distro,
        gpu_info=detect_gpus(executor),
        kernel_detector=KernelDetector(executor),
        display_detector=DisplayDetector(),
        nouveau_detector=NouveauDetector(executor),
        file_writer=FileWriter(executor),
        dry_run=settings.dry_run,
        driver_version=settings.driver_version,
        components=settings.components,
    )


def plan_command(config: ConfigurationManager, console: ConsoleManager) -> int:
    """Print the ordered step list for this host."""
    try:
        distro = detect_distribution()
        workflow = WorkflowBuilder(distro, config.to_builder_config()).build()
    except ConfigurationError as e:
        console.print_error(str(e))
        return EXIT_FAILED
    console.print_plan(workflow.name, workflow.steps)
    return EXIT_OK


def install_command(
    config: ConfigurationManager,
    console: ConsoleManager,
    executor: Optional[CommandExecutor] = None,
) -> int:
    """Run the installation workflow.

    Returns:
        0 when the workflow completed, 130 when cancelled, 1 otherwise
    """
    try:
        config.validate()
        distro = detect_distribution()
        workflow = WorkflowBuilder(distro, config.to_builder_config()).build()
    except ConfigurationError as e:
        console.print_error(str(e))
        return EXIT_FAILED

    ctx = build_context(config.settings, distro, executor)
    orchestrator = Orchestrator(workflow, progress_callback=console.on_progress)

    def _cancel(signum, frame):
        logger.warning("Interrupt received, stopping after the current operation")
        ctx.cancel()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        report = orchestrator.execute(ctx)
    finally:
        signal.signal(signal.SIGINT, previous)

    logger.info(report.summary())
    result = report.result

    console.print_summary(result, ctx)
    if result.status is WorkflowStatus.COMPLETED:
        return EXIT_OK
    if result.status is WorkflowStatus.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    config = ConfigurationManager(env_file=args.env_file, overrides=settings_overrides(args))
    try:
        settings = config.settings
    except ConfigurationError as e:
        ConsoleManager(json_output=bool(args.json_output)).print_error(str(e))
        return EXIT_FAILED

    console = ConsoleManager(json_output=settings.json_output)
    LoggingFactory.initialize(
        log_dir=settings.log_dir,
        level=logging.DEBUG if args.verbose else settings.log_level_value,
        console=console.console,
        log_to_file=settings.log_to_file and args.command == "install",
    )

    try:
        if args.command == "install":
            return install_command(config, console)
        if args.command == "plan":
            return plan_command(config, console)
        parser.print_help()
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.error("Operation cancelled by user")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
