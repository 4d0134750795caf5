# src/ghr_installer/cli.py

import argparse
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ghr_installer import log_utils, menu_install, setup_config
from ghr_installer.constants import APP_NAME, INSTALL_MODE_NEWER, INSTALL_MODES
from ghr_installer.exceptions import (
    ConfigurationError,
    GhrInstallerError,
    LockBusyError,
)
from ghr_installer.install.interfaces import DependencyStatus, PackageCheck, RepoSpec
from ghr_installer.install.orchestrator import InstallOrchestrator
from ghr_installer.utils import get_api_request_summary, reset_api_tracking

console = Console()

ASSET_DISPLAY_WIDTH = 37

DEPENDENCY_LABELS = {
    DependencyStatus.STATIC: "No, static",
    DependencyStatus.SATISFIED: "Yes, satisfied",
    DependencyStatus.MISSING: "Yes, needed",
}


def get_ghr_installer_version() -> str:
    """
    Retrieve the installed ghr-installer package version.

    Returns:
        version (str): The installed version string, or "unknown" if it cannot be determined.
    """
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version(APP_NAME)
    except PackageNotFoundError:
        return "unknown"


def _format_asset(check: PackageCheck) -> str:
    if check.asset is None:
        return "-"
    name = check.asset.name
    if len(name) > ASSET_DISPLAY_WIDTH:
        name = name[: ASSET_DISPLAY_WIDTH - 3] + "..."
    return f"{name} (cached)" if check.asset_from_cache else name


def build_check_table(checks: Dict[str, PackageCheck]) -> Table:
    """Render check results as a table of versions, asset and dependency state."""
    table = Table(title="Repository check")
    table.add_column("Binary", style="bold")
    table.add_column("GitHub")
    table.add_column("APT")
    table.add_column("Installed")
    table.add_column("Newer")
    table.add_column("Asset")
    table.add_column("Dependencies")

    for name, check in checks.items():
        if check.error:
            status = "[red]error[/red]"
            asset = escape(check.error)
        else:
            status = check.status or "-"
            asset = _format_asset(check)
        dependencies = (
            DEPENDENCY_LABELS[check.dependencies.status] if check.dependencies else "-"
        )
        table.add_row(
            name,
            check.github_version or "-",
            check.apt_version or "not found",
            check.installed_version or "-",
            status,
            asset,
            dependencies,
        )
    return table


def report_missing_dependencies(checks: Dict[str, PackageCheck]) -> None:
    missing: List[str] = []
    for check in checks.values():
        if check.dependencies and check.dependencies.status == DependencyStatus.MISSING:
            missing.extend(check.dependencies.missing)

    console.print("\nDependencies needed:")
    if missing:
        for dep in dict.fromkeys(missing):
            console.print(f"  {dep}")
    else:
        console.print("No additional dependencies required")


def _report_install_result(installed: List[str], failed: List[str]) -> int:
    if not installed and not failed:
        log_utils.logger.info("Nothing to install.")
    return 1 if failed else 0


def _maybe_configure_path(orchestrator: InstallOrchestrator, installed: List[str]):
    if not installed:
        return
    path_entries = os.environ.get("PATH", "").split(os.pathsep)
    if orchestrator.install_dir not in path_entries:
        orchestrator.ensure_path_configured()


def _run_check(
    args: argparse.Namespace,
    orchestrator: InstallOrchestrator,
    repos: List[RepoSpec],
) -> int:
    if not repos:
        log_utils.logger.warning(
            "No repositories configured. Add `owner/repo` lines to "
            f"{orchestrator.config.get('REPOS_FILE')}"
        )
        return 0

    checks = orchestrator.check_repositories(repos)
    console.print(build_check_table(checks))
    report_missing_dependencies(checks)

    summary = get_api_request_summary()
    log_utils.logger.debug(f"API request summary: {summary}")

    mode = getattr(args, "mode", None)
    if mode is None:
        if args.no_menu or not sys.stdin.isatty():
            return 0
        mode = menu_install.select_install_mode(orchestrator.install_dir)
        if mode is None:
            console.print("Exit, no changes made")
            return 0

    if mode == menu_install.MENU_INDIVIDUAL:
        selections = menu_install.choose_individually(checks)
        installed, failed = orchestrator.install_selected(checks, selections)
    else:
        installed, failed = orchestrator.install_packages(checks, mode)
    _maybe_configure_path(orchestrator, installed)
    return _report_install_result(installed, failed)


def _run_list(orchestrator: InstallOrchestrator) -> int:
    packages = orchestrator.list_installed()
    if not packages:
        console.print("No packages installed via ghr-installer.")
        return 0

    table = Table(title="Installed packages")
    table.add_column("Package", style="bold")
    table.add_column("Version")
    table.add_column("Source")
    table.add_column("Installed")
    table.add_column("Updated")
    table.add_column("Files")
    for name, record in packages.items():
        table.add_row(
            name,
            record.version,
            record.source,
            record.installed_at,
            record.updated_at,
            "\n".join(record.files),
        )
    console.print(table)
    return 0


def _dispatch(
    args: argparse.Namespace,
    command: str,
    config: Dict[str, Any],
    orchestrator: InstallOrchestrator,
) -> int:
    if args.clear_cache:
        if orchestrator.clear_caches():
            console.print("Cache purged!")
            return 0
        log_utils.logger.error("Failed to clear cache.")
        return 1

    if command in ("check", "install"):
        repos = setup_config.load_repos(config["REPOS_FILE"])
        return _run_check(args, orchestrator, repos)
    if command == "update":
        repos = setup_config.load_repos(config["REPOS_FILE"])
        updated = orchestrator.update_package(args.package, repos)
        if updated:
            _maybe_configure_path(orchestrator, [args.package])
        return 0
    if command == "remove":
        if not orchestrator.remove_package(args.package):
            return 1
        return 0
    if command == "list":
        return _run_list(orchestrator)
    if command == "status":
        status = orchestrator.installation_status(args.package)
        console.print(f"{args.package}: {status.value}")
        return 0
    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="ghr-installer - install and track prebuilt binaries from GitHub releases",
    )
    parser.add_argument(
        "--override-cache",
        action="store_true",
        help="Bypass the release and artifact caches and fetch fresh data",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Clear the GitHub API and asset cache, then exit",
    )
    parser.add_argument(
        "--config", metavar="PATH", help="Use this configuration file instead of the default"
    )
    parser.add_argument(
        "--log-dir", metavar="DIR", help="Also write a rotating log file into DIR"
    )
    subparsers = parser.add_subparsers(dest="command")

    check_parser = subparsers.add_parser(
        "check", help="Check repositories and choose what to install (default)"
    )
    check_parser.add_argument(
        "--no-menu",
        action="store_true",
        help="Only print the check table, never prompt",
    )

    install_parser = subparsers.add_parser(
        "install", help="Check repositories and install without prompting"
    )
    install_parser.add_argument(
        "--mode",
        choices=INSTALL_MODES,
        default=INSTALL_MODE_NEWER,
        help="newer: GitHub releases newer than APT; github: all GitHub releases; apt: all APT packages",
    )

    update_parser = subparsers.add_parser("update", help="Update a single package")
    update_parser.add_argument("package", metavar="PACKAGE")

    remove_parser = subparsers.add_parser(
        "remove", help="Remove a package installed by ghr-installer"
    )
    remove_parser.add_argument("package", metavar="PACKAGE")

    subparsers.add_parser("list", help="List installed packages")

    status_parser = subparsers.add_parser(
        "status", help="Show the installation status of a package"
    )
    status_parser.add_argument("package", metavar="PACKAGE")

    subparsers.add_parser("version", help="Display ghr-installer version")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    # Logging is automatically initialized by importing log_utils

    """
    Entry point for the ghr-installer command-line interface.

    Parses arguments, loads the configuration and dispatches the subcommand:
    check (the default), install, update, remove, list, status and version.
    Exits with status 1 when another instance holds the database lock, when
    the configuration cannot be loaded, or when the command fails.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "check"
    if command == "check" and not hasattr(args, "no_menu"):
        args.no_menu = False

    if command == "version":
        print(f"ghr-installer v{get_ghr_installer_version()}")
        return

    try:
        config = setup_config.load_config(args.config)
    except ConfigurationError as e:
        log_utils.logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if config.get("LOG_LEVEL"):
        log_utils.set_log_level(str(config["LOG_LEVEL"]))
    if args.log_dir:
        log_utils.add_file_logging(
            Path(args.log_dir), str(config.get("LOG_LEVEL") or "INFO")
        )
    if args.override_cache:
        config["OVERRIDE_CACHE"] = True

    reset_api_tracking()
    try:
        with InstallOrchestrator(config) as orchestrator:
            exit_code = _dispatch(args, command, config, orchestrator)
    except LockBusyError as e:
        log_utils.logger.error(f"Error: {e}")
        sys.exit(1)
    except GhrInstallerError as e:
        log_utils.logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        log_utils.logger.info("Interrupted, no further changes made")
        sys.exit(130)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
