"""
Tests for the environment probe: distribution check, desktop detection and
reboot signals.
"""

import pytest

from fedora_setup.environment import (
    DesktopEnvironment,
    FatalPreconditionError,
    check_reboot_required,
    detect,
    detect_desktop_environment,
    latest_installed_kernel,
    parse_fedora_version,
    read_boot_time,
    require_target_distribution,
)

RELEASE = "Fedora release 41 (Forty One)\n"
KERNEL_LIST = (
    "kernel-6.11.4-301.fc41.x86_64                  Tue 22 Oct 2024 10:00:00 AM\n"
    "kernel-6.11.3-300.fc41.x86_64                  Fri 11 Oct 2024 09:00:00 AM\n"
)


@pytest.fixture
def release_file(tmp_path):
    path = tmp_path / "fedora-release"
    path.write_text(RELEASE)
    return path


@pytest.fixture
def proc_stat(tmp_path):
    path = tmp_path / "stat"
    path.write_text("cpu  1 2 3 4\nbtime 1700000000\nprocesses 42\n")
    return path


def _no_commands(name):
    return False


class TestDistribution:
    def test_missing_marker_is_fatal(self, tmp_path):
        with pytest.raises(FatalPreconditionError):
            require_target_distribution(tmp_path / "nope")

    def test_release_text_returned(self, release_file):
        assert require_target_distribution(release_file) == RELEASE.strip()

    def test_version_parsed(self):
        assert parse_fedora_version(RELEASE) == "41"
        assert parse_fedora_version("something else") == ""


class TestDesktopDetection:
    @pytest.mark.parametrize("environ, expected", [
        ({"XDG_CURRENT_DESKTOP": "KDE"}, DesktopEnvironment.KDE),
        ({"DESKTOP_SESSION": "plasma"}, DesktopEnvironment.KDE),
        ({"XDG_CURRENT_DESKTOP": "GNOME"}, DesktopEnvironment.GNOME),
        ({"XDG_CURRENT_DESKTOP": "ubuntu:GNOME"}, DesktopEnvironment.GNOME),
        ({"DESKTOP_SESSION": "gnome"}, DesktopEnvironment.GNOME),
    ])
    def test_session_variables(self, environ, expected):
        assert detect_desktop_environment(environ, lambda name: False) is expected

    def test_falls_back_to_process_probe(self):
        running = {"plasmashell"}
        assert detect_desktop_environment({}, lambda name: name in running) is DesktopEnvironment.KDE

    def test_gnome_shell_process(self):
        assert detect_desktop_environment({}, lambda name: name == "gnome-shell") is DesktopEnvironment.GNOME

    def test_unknown_when_nothing_matches(self):
        assert detect_desktop_environment({"XDG_CURRENT_DESKTOP": "XFCE"}, lambda name: False) \
            is DesktopEnvironment.UNKNOWN


class TestRebootSignals:
    def test_latest_kernel_parsed(self, runner):
        runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
        assert latest_installed_kernel(runner) == "6.11.4-301.fc41.x86_64"

    def test_boot_time(self, proc_stat, tmp_path):
        assert read_boot_time(proc_stat) == 1700000000
        assert read_boot_time(tmp_path / "missing") is None

    def test_kernel_mismatch_requires_reboot(self, runner, run_log, proc_stat):
        runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
        required, reasons = check_reboot_required(
            run_log, runner, kernel_release="6.11.3-300.fc41.x86_64", proc_stat=proc_stat, has_command=_no_commands
        )
        assert required
        assert any("6.11.4-301" in r for r in reasons)

    def test_running_latest_kernel_is_fine(self, runner, run_log, proc_stat):
        runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
        runner.on(["rpm", "-q", "--queryformat"], stdout="glibc 1690000000\nsystemd 1690000000\n")
        required, reasons = check_reboot_required(
            run_log, runner, kernel_release="6.11.4-301.fc41.x86_64", proc_stat=proc_stat, has_command=_no_commands
        )
        assert not required
        assert reasons == []

    def test_critical_package_updated_since_boot(self, runner, run_log, proc_stat):
        runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
        runner.on(["rpm", "-q", "--queryformat"], stdout="glibc 1700000500\nglibc 1600000000\nsystemd 1690000000\n")
        required, reasons = check_reboot_required(
            run_log, runner, kernel_release="6.11.4-301.fc41.x86_64", proc_stat=proc_stat, has_command=_no_commands
        )
        assert required
        assert reasons == ["Critical packages updated since boot: glibc"]

    def test_needs_restarting(self, runner, run_log, proc_stat):
        runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
        runner.on(["needs-restarting", "-r"], returncode=1, stdout="Reboot is required")
        required, _ = check_reboot_required(
            run_log, runner, kernel_release="6.11.4-301.fc41.x86_64", proc_stat=proc_stat,
            has_command=lambda name: name == "needs-restarting",
        )
        assert required

    def test_failed_probes_mean_no_signal(self, runner, run_log, tmp_path):
        runner.on(["rpm"], returncode=1)
        required, _ = check_reboot_required(
            run_log, runner, kernel_release="6.11.4-301.fc41.x86_64", proc_stat=tmp_path / "missing",
            has_command=_no_commands,
        )
        assert not required


class TestDetect:
    def test_facts_captured(self, runner, run_log, release_file, proc_stat):
        runner.on(["rpm", "-q", "--last", "kernel"], stdout=KERNEL_LIST)
        facts = detect(
            run_log, runner, environ={"XDG_CURRENT_DESKTOP": "KDE"}, release_file=release_file,
            proc_stat=proc_stat, kernel_release="6.11.4-301.fc41.x86_64", has_command=_no_commands,
        )
        assert facts.is_target_distribution
        assert facts.is_kde
        assert not facts.reboot_required
        assert facts.fedora_version == "41"

    def test_facts_are_frozen(self, gnome_facts):
        with pytest.raises(AttributeError):
            gnome_facts.reboot_required = True
