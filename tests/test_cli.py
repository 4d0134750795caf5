"""
Tests for the command line interface.

The orchestrator is mocked; these tests cover argument handling, dispatch,
exit codes and table rendering.
"""

import io

import pytest
from rich.console import Console

from ghr_installer import cli
from ghr_installer.exceptions import ConfigFileError, LockBusyError
from ghr_installer.install.interfaces import (
    Asset,
    DependencyReport,
    DependencyStatus,
    PackageCheck,
    PackageRecord,
    PackageStatus,
    RepoSpec,
)

pytestmark = [pytest.mark.unit, pytest.mark.user_interface]


def _check(name="fzf", repo="junegunn/fzf", **kwargs):
    defaults = dict(
        github_version="0.57.0",
        apt_version="0.44.1-1ubuntu0.2",
        status="GitHub",
        asset=Asset(name="fzf-0.57.0-linux_amd64.tar.gz", download_url="https://x"),
        binary_path="/tmp/work/fzf",
        dependencies=DependencyReport(DependencyStatus.SATISFIED),
    )
    defaults.update(kwargs)
    return PackageCheck(repo=RepoSpec(repo, name), **defaults)


@pytest.fixture
def output(mocker):
    buffer = io.StringIO()
    mocker.patch.object(cli, "console", Console(file=buffer, width=200))
    return buffer


@pytest.fixture
def config(app_config, tmp_path, mocker):
    (tmp_path / "repos.txt").write_text("junegunn/fzf\n")
    mocker.patch("ghr_installer.cli.setup_config.load_config", return_value=app_config)
    return app_config


@pytest.fixture
def orchestrator(mocker, config):
    orchestrator_cls = mocker.patch("ghr_installer.cli.InstallOrchestrator")
    instance = orchestrator_cls.return_value.__enter__.return_value
    instance.install_dir = "/opt/ghr-test/bin"
    instance.config = config
    instance.check_repositories.return_value = {"fzf": _check()}
    instance.install_packages.return_value = (["fzf"], [])
    instance.install_selected.return_value = (["fzf"], [])
    instance.ensure_path_configured.return_value = None
    return instance


class TestParser:
    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.command is None
        assert args.override_cache is False
        assert args.clear_cache is False

    def test_install_mode_default(self):
        args = cli.build_parser().parse_args(["install"])
        assert args.mode == "newer"

    def test_invalid_install_mode(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["install", "--mode", "all"])


class TestCheckTable:
    def test_rows(self, output):
        checks = {
            "fzf": _check(),
            "rg": _check(
                name="rg",
                repo="BurntSushi/ripgrep",
                apt_version=None,
                status="GitHub only",
                asset_from_cache=True,
                asset=Asset(
                    name="ripgrep-14.1.1-x86_64-unknown-linux-gnu.tar.gz",
                    download_url="https://x",
                ),
                dependencies=DependencyReport(DependencyStatus.STATIC),
            ),
            "bat": PackageCheck(
                repo=RepoSpec("sharkdp/bat", "bat"), error="rate limit [exceeded]"
            ),
        }

        cli.console.print(cli.build_check_table(checks))
        text = output.getvalue()

        assert "0.44.1-1ubuntu0.2" in text
        assert "Yes, satisfied" in text
        assert "not found" in text
        assert "(cached)" in text
        assert "No, static" in text
        assert "rate limit [exceeded]" in text

    def test_long_asset_names_are_truncated(self):
        check = _check(
            asset=Asset(name="x" * 60 + ".tar.gz", download_url="https://x")
        )
        formatted = cli._format_asset(check)
        assert len(formatted) == cli.ASSET_DISPLAY_WIDTH
        assert formatted.endswith("...")

    def test_missing_dependencies_summary(self, output):
        checks = {
            "bat": _check(
                name="bat",
                dependencies=DependencyReport(
                    DependencyStatus.MISSING, ["libonig.so.5", "libgit2.so.1.7"]
                ),
            ),
            "delta": _check(
                name="delta",
                dependencies=DependencyReport(DependencyStatus.MISSING, ["libgit2.so.1.7"]),
            ),
        }
        cli.report_missing_dependencies(checks)
        text = output.getvalue()
        assert text.count("libgit2.so.1.7") == 1
        assert "libonig.so.5" in text


class TestMainCommands:
    def test_version(self, capsys, mocker):
        mocker.patch.object(cli, "get_ghr_installer_version", return_value="0.1.0")
        cli.main(["version"])
        assert "ghr-installer v0.1.0" in capsys.readouterr().out

    def test_check_without_menu_only_prints(self, orchestrator, output):
        cli.main(["check", "--no-menu"])

        orchestrator.check_repositories.assert_called_once()
        repos = orchestrator.check_repositories.call_args.args[0]
        assert repos == [RepoSpec("junegunn/fzf", "fzf")]
        orchestrator.install_packages.assert_not_called()
        assert "fzf" in output.getvalue()

    def test_default_command_is_check_and_skips_menu_without_tty(
        self, orchestrator, output, mocker
    ):
        stdin = mocker.patch("ghr_installer.cli.sys.stdin")
        stdin.isatty.return_value = False
        menu = mocker.patch("ghr_installer.cli.menu_install.select_install_mode")

        cli.main([])

        orchestrator.check_repositories.assert_called_once()
        menu.assert_not_called()

    def test_menu_selected_mode_installs(self, orchestrator, output, mocker):
        stdin = mocker.patch("ghr_installer.cli.sys.stdin")
        stdin.isatty.return_value = True
        mocker.patch(
            "ghr_installer.cli.menu_install.select_install_mode", return_value="github"
        )

        cli.main(["check"])

        orchestrator.install_packages.assert_called_once()
        assert orchestrator.install_packages.call_args.args[1] == "github"
        orchestrator.ensure_path_configured.assert_called_once()

    def test_menu_cancel_changes_nothing(self, orchestrator, output, mocker):
        stdin = mocker.patch("ghr_installer.cli.sys.stdin")
        stdin.isatty.return_value = True
        mocker.patch(
            "ghr_installer.cli.menu_install.select_install_mode", return_value=None
        )

        cli.main(["check"])

        orchestrator.install_packages.assert_not_called()
        assert "no changes made" in output.getvalue()

    def test_menu_individual_choices(self, orchestrator, output, mocker):
        stdin = mocker.patch("ghr_installer.cli.sys.stdin")
        stdin.isatty.return_value = True
        mocker.patch(
            "ghr_installer.cli.menu_install.select_install_mode",
            return_value="individual",
        )
        mocker.patch(
            "ghr_installer.cli.menu_install.choose_individually",
            return_value={"fzf": "apt"},
        )

        cli.main(["check"])

        orchestrator.install_selected.assert_called_once()
        assert orchestrator.install_selected.call_args.args[1] == {"fzf": "apt"}

    def test_install_subcommand_uses_mode(self, orchestrator, output):
        cli.main(["install", "--mode", "apt"])
        assert orchestrator.install_packages.call_args.args[1] == "apt"

    def test_failed_install_exits_non_zero(self, orchestrator, output):
        orchestrator.install_packages.return_value = ([], ["fzf"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["install"])
        assert exc_info.value.code == 1

    def test_empty_repository_list(self, orchestrator, config, tmp_path, output):
        (tmp_path / "repos.txt").write_text("# nothing yet\n")
        cli.main(["check", "--no-menu"])
        orchestrator.check_repositories.assert_not_called()

    def test_override_cache_flag_reaches_config(self, orchestrator, config, output):
        cli.main(["--override-cache", "check", "--no-menu"])
        assert config["OVERRIDE_CACHE"] is True

    def test_clear_cache(self, orchestrator, output):
        orchestrator.clear_caches.return_value = True
        cli.main(["--clear-cache"])
        orchestrator.clear_caches.assert_called_once()
        orchestrator.check_repositories.assert_not_called()
        assert "Cache purged!" in output.getvalue()

    def test_clear_cache_failure(self, orchestrator, output):
        orchestrator.clear_caches.return_value = False
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--clear-cache"])
        assert exc_info.value.code == 1

    def test_update(self, orchestrator, output):
        orchestrator.update_package.return_value = True
        cli.main(["update", "fzf"])
        assert orchestrator.update_package.call_args.args[0] == "fzf"

    def test_remove_unknown_package_exits_1(self, orchestrator, output):
        orchestrator.remove_package.return_value = False
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["remove", "fzf"])
        assert exc_info.value.code == 1

    def test_remove(self, orchestrator, output):
        orchestrator.remove_package.return_value = True
        cli.main(["remove", "fzf"])
        orchestrator.remove_package.assert_called_once_with("fzf")

    def test_list(self, orchestrator, output):
        orchestrator.list_installed.return_value = {
            "fzf": PackageRecord(
                version="0.57.0",
                files=["/home/u/.local/bin/fzf"],
                installed_at="2025-01-01T00:00:00Z",
                updated_at="2025-01-02T00:00:00Z",
            )
        }
        cli.main(["list"])
        text = output.getvalue()
        assert "0.57.0" in text
        assert "/home/u/.local/bin/fzf" in text

    def test_list_empty(self, orchestrator, output):
        orchestrator.list_installed.return_value = {}
        cli.main(["list"])
        assert "No packages installed" in output.getvalue()

    def test_status(self, orchestrator, output):
        orchestrator.installation_status.return_value = PackageStatus.FILES_MISSING
        cli.main(["status", "fzf"])
        assert "fzf: files missing" in output.getvalue()


class TestMainErrors:
    def test_lock_busy_exits_1(self, orchestrator, output):
        orchestrator.install_packages.side_effect = LockBusyError(4242)
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["install"])
        assert exc_info.value.code == 1

    def test_config_error_exits_1(self, mocker):
        mocker.patch(
            "ghr_installer.cli.setup_config.load_config",
            side_effect=ConfigFileError("Invalid YAML"),
        )
        orchestrator_cls = mocker.patch("ghr_installer.cli.InstallOrchestrator")
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["list"])
        assert exc_info.value.code == 1
        orchestrator_cls.assert_not_called()

    def test_keyboard_interrupt_exits_130(self, orchestrator, output):
        orchestrator.check_repositories.side_effect = KeyboardInterrupt
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["check", "--no-menu"])
        assert exc_info.value.code == 130

    def test_log_dir_enables_file_logging(self, orchestrator, output, tmp_path, mocker):
        add_file_logging = mocker.patch("ghr_installer.cli.log_utils.add_file_logging")
        cli.main(["--log-dir", str(tmp_path / "logs"), "list"])
        add_file_logging.assert_called_once()
        assert add_file_logging.call_args.args[0] == tmp_path / "logs"
