"""
End-to-end runs of provision() and main() over the fakes: distribution
check, reboot halt, exit codes and second-run idempotence.
"""

import pytest

from fedora_setup import provision as provision_module
from fedora_setup.config import CONFIG_FILE_PATH
from fedora_setup.config_loader import load_configuration
from fedora_setup.environment import FatalPreconditionError
from fedora_setup.phases import finalization, shell, terminal
from fedora_setup.provision import EXIT_INTERRUPTED, main, print_summary, provision

KERNEL_LIST = "kernel-6.11.4-301.fc41.x86_64                  Tue 22 Oct 2024 10:00:00 AM\n"
RUNNING_KERNEL = "6.11.4-301.fc41.x86_64"


@pytest.fixture
def host(tmp_path, runner):
    """A Fedora 41 KDE host, running its newest kernel."""
    release = tmp_path / "fedora-release"
    release.write_text("Fedora release 41 (Forty One)\n")
    proc_stat = tmp_path / "stat"
    proc_stat.write_text("btime 1700000000\n")
    runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
    return {
        "release_file": release,
        "proc_stat": proc_stat,
        "environ": {"XDG_CURRENT_DESKTOP": "KDE"},
        "kernel_release": RUNNING_KERNEL,
        "has_command": lambda name: False,
    }


class TestProvision:
    def test_non_fedora_host_runs_nothing(self, make_ctx, runner, tmp_path):
        with pytest.raises(FatalPreconditionError):
            provision(make_ctx(), release_file=tmp_path / "missing-release")
        assert runner.calls == []

    def test_pending_kernel_halts_after_update(self, make_ctx, runner, host):
        host["kernel_release"] = "6.10.12-200.fc40.x86_64"
        summary, facts = provision(make_ctx(), **host)

        assert facts.reboot_required
        assert summary.halted_for_reboot
        assert summary.exit_code == 0
        assert [r.name for r in summary.records] == ["system_update", "reboot_gate"]
        assert runner.ran("sudo", "dnf", "-y", "upgrade", "--refresh")
        assert not runner.ran("sudo", "dnf", "install")

    def test_second_run_changes_nothing(self, make_ctx, host, paths):
        config = load_configuration(CONFIG_FILE_PATH)
        paths.zshrc.write_text('export ZSH="$HOME/.oh-my-zsh"\nZSH_THEME="robbyrussell"\nplugins=(git)\n')
        paths.p10k_config.write_text("# generated by p10k configure\n")

        def main_steps():
            by_name = {s.name: s for s in terminal.steps() + shell.steps() + finalization.steps()}
            return [by_name[n] for n in ("terminal_font_kde", "zsh_theme", "update_alias", "p10k_wizard")]

        first, facts = provision(make_ctx(config), update_steps=[], main_steps=main_steps(), **host)
        assert facts.is_kde
        assert first.succeeded == ["terminal_font_kde", "zsh_theme", "update_alias", "p10k_wizard"]
        zshrc = paths.zshrc.read_text()
        assert zshrc.count("alias update=") == 1

        second, _ = provision(make_ctx(config), update_steps=[], main_steps=main_steps(), **host)
        assert second.skipped == ["terminal_font_kde", "zsh_theme", "update_alias", "p10k_wizard"]
        assert second.executed == []
        assert paths.zshrc.read_text() == zshrc

    def test_halted_run_prints_no_summary_panel(self, make_ctx, host, run_log, capsys):
        host["kernel_release"] = "6.10.12-200.fc40.x86_64"
        summary, facts = provision(make_ctx(), update_steps=[], **host)
        print_summary(summary, facts, run_log)
        assert "Setup Complete" not in capsys.readouterr().out
        assert any("Run summary" in m for m in run_log.messages())


class TestMain:
    @pytest.fixture
    def main_env(self, monkeypatch, paths, tmp_path):
        config_file = tmp_path / "packages.json"
        config_file.write_text('{"basic_packages": ["git"]}')
        monkeypatch.setattr(provision_module, "default_paths", lambda: paths)
        monkeypatch.setattr(provision_module, "CONFIG_FILE_PATH", config_file)
        return config_file

    def _provision_raising(self, exc):
        def fake(ctx, **kwargs):
            raise exc
        return fake

    def test_missing_config_exits_1(self, main_env, paths):
        main_env.unlink()
        assert main() == 1
        assert "Failed to load" in paths.log_file.read_text(encoding="utf-8")

    def test_non_fedora_exits_1(self, main_env, monkeypatch):
        monkeypatch.setattr(provision_module, "provision",
                            self._provision_raising(FatalPreconditionError("This script is intended for Fedora.")))
        assert main() == 1

    def test_interrupt_exits_130(self, main_env, monkeypatch, paths):
        monkeypatch.setattr(provision_module, "provision", self._provision_raising(KeyboardInterrupt()))
        assert main() == EXIT_INTERRUPTED
        log_text = paths.log_file.read_text(encoding="utf-8")
        assert "cancelled by user" in log_text
        assert "Log file saved to" in log_text

    def test_unexpected_error_logged_with_traceback(self, main_env, monkeypatch, paths):
        monkeypatch.setattr(provision_module, "provision", self._provision_raising(RuntimeError("kaboom")))
        assert main() == 1
        log_text = paths.log_file.read_text(encoding="utf-8")
        assert "kaboom" in log_text
        assert "Traceback" in log_text
