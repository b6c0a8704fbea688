"""
Tests for the fetch-and-install pipeline: cache staleness, version probes,
archive and AppImage installs, and fetched-script safety.
"""

import io
import os
import stat
import tarfile
import zipfile

import pytest
import requests

from fedora_setup.artifacts import (
    ArtifactCache,
    FetchStatus,
    ResolvedArtifact,
    UnsafeScriptError,
    github_release_probe,
    install_appimage,
    install_archive,
    install_rpm_artifacts,
    installed_from,
    page_link_probe,
    redirect_probe,
    run_fetched_script,
    scan_script,
)
from fedora_setup.config import INSTALL_MARKER_NAME
from fedora_setup.package_manager import Dnf

TABBY_URL = "https://github.com/Eugeny/tabby/releases/download/v1.0.216/tabby-1.0.216-linux-x64.rpm"


def _probe(url, filename):
    return lambda: ResolvedArtifact(url, filename)


def _make_tar_xz(path, files):
    with tarfile.open(path, "w:xz") as tf:
        for name, (data, mode) in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tf.addfile(info, io.BytesIO(data))


def _make_zip(path, files):
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)


# ── Cache ────────────────────────────────────────────────────────────


class TestArtifactCache:
    def test_new_version_replaces_stale(self, paths, fetcher, run_log):
        paths.packages_dir.mkdir(parents=True)
        stale = [paths.packages_dir / "tabby-1.0.199-linux-x64.rpm", paths.packages_dir / "tabby-1.0.200-linux-x64.rpm"]
        for path in stale:
            path.write_bytes(b"old")
        fetcher.files[TABBY_URL] = b"new rpm"

        cache = ArtifactCache(paths.packages_dir, fetcher, run_log)
        result = cache.ensure_latest("tabby", "tabby-*.rpm", _probe(TABBY_URL, "tabby-1.0.216-linux-x64.rpm"))

        assert result.status is FetchStatus.DOWNLOADED
        assert not any(path.exists() for path in stale)
        assert result.removed == tuple(stale)
        assert [p.name for p in cache.matching("tabby-*.rpm")] == ["tabby-1.0.216-linux-x64.rpm"]
        assert not list(paths.packages_dir.glob("*.part"))

    def test_already_cached_skips_download(self, paths, fetcher, run_log):
        paths.packages_dir.mkdir(parents=True)
        (paths.packages_dir / "tabby-1.0.216-linux-x64.rpm").write_bytes(b"cached")

        cache = ArtifactCache(paths.packages_dir, fetcher, run_log)
        result = cache.ensure_latest("tabby", "tabby-*.rpm", _probe(TABBY_URL, "tabby-1.0.216-linux-x64.rpm"))

        assert result.status is FetchStatus.ALREADY_CACHED
        assert fetcher.downloads == []
        assert any("already downloaded" in m for m in run_log.messages())

    def test_probe_failure_leaves_cache_alone(self, paths, fetcher, run_log):
        paths.packages_dir.mkdir(parents=True)
        current = paths.packages_dir / "tabby-1.0.200-linux-x64.rpm"
        current.write_bytes(b"old")

        def probe():
            raise requests.ConnectionError("offline")

        result = ArtifactCache(paths.packages_dir, fetcher, run_log).ensure_latest("tabby", "tabby-*.rpm", probe)
        assert result.status is FetchStatus.FAILED
        assert "offline" in result.error
        assert current.exists()

    def test_download_failure_removes_partial(self, paths, fetcher, run_log):
        fetcher.failing.add(TABBY_URL)
        cache = ArtifactCache(paths.packages_dir, fetcher, run_log)
        result = cache.ensure_latest("tabby", "tabby-*.rpm", _probe(TABBY_URL, "tabby-1.0.216-linux-x64.rpm"))
        assert not result.ok
        assert list(paths.packages_dir.iterdir()) == []

    def test_unsafe_filename_rejected(self, paths, fetcher, run_log):
        cache = ArtifactCache(paths.packages_dir, fetcher, run_log)
        result = cache.ensure_latest("evil", "*.rpm", _probe("https://example.com/x", "../../etc/passwd"))
        assert result.status is FetchStatus.FAILED
        assert fetcher.downloads == []

    def test_install_failure_marks_result_failed(self, paths, fetcher, run_log):
        fetcher.files[TABBY_URL] = b"rpm"

        def install(entry):
            raise OSError("read-only file system")

        cache = ArtifactCache(paths.packages_dir, fetcher, run_log)
        result = cache.ensure_latest("tabby", "tabby-*.rpm", _probe(TABBY_URL, "tabby-1.0.216-linux-x64.rpm"),
                                     install_fn=install)
        assert result.status is FetchStatus.FAILED
        assert result.entry is not None and result.entry.path.exists()


# ── Version probes ───────────────────────────────────────────────────


class TestProbes:
    def test_redirect_probe(self, fetcher):
        start = "https://code.visualstudio.com/sha/download?build=stable&os=linux-rpm-x64"
        fetcher.redirects[start] = "https://vscode.download.prss.microsoft.com/abc/code-1.95.0-1729.el8.x86_64.rpm"
        resolved = redirect_probe(fetcher, start)()
        assert resolved.filename == "code-1.95.0-1729.el8.x86_64.rpm"

    def test_github_release_probe(self, fetcher):
        fetcher.json["https://api.github.com/repos/usebruno/bruno/releases/latest"] = {
            "assets": [
                {"name": "bruno_1.30.0_amd64_linux.deb",
                 "browser_download_url": "https://github.com/x/bruno_1.30.0_amd64_linux.deb"},
                {"name": "bruno_1.30.0_x86_64_linux.rpm",
                 "browser_download_url": "https://github.com/x/bruno_1.30.0_x86_64_linux.rpm"},
            ]
        }
        resolved = github_release_probe(fetcher, "usebruno/bruno", r"_x86_64_linux\.rpm$")()
        assert resolved == ResolvedArtifact("https://github.com/x/bruno_1.30.0_x86_64_linux.rpm",
                                            "bruno_1.30.0_x86_64_linux.rpm")

    def test_github_probe_without_match(self, fetcher):
        fetcher.json["https://api.github.com/repos/a/b/releases/latest"] = {"assets": []}
        assert github_release_probe(fetcher, "a/b", r"\.rpm$")() is None

    def test_page_link_probe_versions_filename(self, fetcher):
        fetcher.texts["https://mikrotik.com/download"] = (
            '<a href="https://download.mikrotik.com/routeros/winbox/4.0beta9/WinBox_Linux.zip">Linux</a>'
        )
        probe = page_link_probe(
            fetcher, "https://mikrotik.com/download",
            r"https://download\.mikrotik\.com/routeros/winbox/[^\"]+/WinBox_Linux\.zip",
            "winbox_{version}.zip",
        )
        assert probe().filename == "winbox_4.0beta9.zip"


# ── Installers ───────────────────────────────────────────────────────


class TestInstallArchive:
    def test_tar_with_top_level_directory(self, tmp_path):
        archive = tmp_path / "tsetup.5.6.3.tar.xz"
        _make_tar_xz(archive, {"Telegram/Telegram": (b"#!/bin/sh\n", 0o644),
                               "Telegram/Updater": (b"#!/bin/sh\n", 0o644)})
        dest = tmp_path / "Applications" / "Telegram"

        app = install_archive("telegram", archive, dest, "Telegram", ["Telegram", "Updater", "missing"])

        assert app.entry_points == ("Telegram", "Updater")
        assert (dest / "Telegram").stat().st_mode & stat.S_IXUSR
        assert installed_from(dest) == archive.name

    def test_reinstall_replaces_previous_tree(self, tmp_path):
        dest = tmp_path / "Applications" / "Telegram"
        old = tmp_path / "tsetup.5.6.2.tar.xz"
        _make_tar_xz(old, {"Telegram/old-only": (b"x", 0o644), "Telegram/Telegram": (b"1", 0o755)})
        install_archive("telegram", old, dest, "Telegram", ["Telegram"])

        new = tmp_path / "tsetup.5.6.3.tar.xz"
        _make_tar_xz(new, {"Telegram/Telegram": (b"2", 0o755)})
        install_archive("telegram", new, dest, "Telegram", ["Telegram"])

        assert not (dest / "old-only").exists()
        assert (dest / "Telegram").read_bytes() == b"2"
        assert (dest / INSTALL_MARKER_NAME).read_text().strip() == new.name

    def test_zip_without_top_level_sets_exec_bit(self, tmp_path):
        archive = tmp_path / "winbox_4.0beta9.zip"
        _make_zip(archive, {"WinBox": b"\x7fELF", "assets/icon.png": b"png"})
        dest = tmp_path / "Applications" / "WinBox"

        install_archive("winbox", archive, dest, entry_points=["WinBox"])

        assert (dest / "assets" / "icon.png").exists()
        assert os.access(dest / "WinBox", os.X_OK)

    def test_same_artifact_is_noop(self, tmp_path):
        archive = tmp_path / "winbox_4.0.zip"
        _make_zip(archive, {"WinBox": b"bin"})
        dest = tmp_path / "WinBox"
        install_archive("winbox", archive, dest, entry_points=["WinBox"])
        (dest / "user-settings").write_text("keep me")

        install_archive("winbox", archive, dest, entry_points=["WinBox"])
        assert (dest / "user-settings").exists()


class TestInstallAppImage:
    def test_copies_and_writes_desktop_entry(self, tmp_path):
        source = tmp_path / "packages" / "ledger-live-desktop-2.90.0-linux-x86_64.AppImage"
        source.parent.mkdir()
        source.write_bytes(b"appimage")
        dest = tmp_path / "Applications" / "LedgerLive.AppImage"
        entries = tmp_path / "applications"

        install_appimage("ledger-live", source, dest, entries, {"name": "Ledger Live"})

        assert os.access(dest, os.X_OK)
        desktop = (entries / "LedgerLive.desktop").read_text()
        assert "Name=Ledger Live" in desktop
        assert f"Exec={dest}" in desktop


class TestInstallRpmArtifacts:
    def test_installed_version_skipped(self, tmp_path, runner, run_log):
        rpm = tmp_path / "tabby-1.0.216-linux-x64.rpm"
        rpm.write_bytes(b"rpm")
        runner.on(["rpm", "-qp"], stdout="tabby-1.0.216-1.x86_64")
        result, pending = install_rpm_artifacts(Dnf(runner, run_log.logger), [rpm], run_log)
        assert result.ok
        assert pending == []
        assert not runner.ran("sudo", "rpm", "-Uvh")

    def test_new_version_installed(self, tmp_path, runner, run_log):
        rpm = tmp_path / "tabby-1.0.216-linux-x64.rpm"
        rpm.write_bytes(b"rpm")
        runner.on(["rpm", "-qp"], stdout="tabby-1.0.216-1.x86_64")
        runner.on(["rpm", "-q", "tabby-1.0.216-1.x86_64"], returncode=1,
                  stdout="package tabby-1.0.216-1.x86_64 is not installed\n")
        result, pending = install_rpm_artifacts(Dnf(runner, run_log.logger), [rpm], run_log)
        assert result.ok
        assert pending == [rpm]
        assert runner.ran("sudo", "rpm", "-Uvh", "--nodeps", str(rpm))


# ── Fetched scripts ──────────────────────────────────────────────────


class TestScriptSafety:
    @pytest.mark.parametrize("text, hits", [
        ("#!/bin/bash\ncp 20-hw1.rules /etc/udev/rules.d/\n", []),
        ("#!/bin/bash\nrm -rf /tmp/build\n", ["rm -rf"]),
        ("dd if=/dev/zero of=/dev/sda\n", ["dd if="]),
    ])
    def test_scan(self, text, hits):
        assert scan_script(text) == hits

    def test_dangerous_script_not_run(self, fetcher, runner, run_log):
        url = "https://example.com/add_udev_rules.sh"
        fetcher.texts[url] = "#!/bin/bash\nrm -rf /\n"
        with pytest.raises(UnsafeScriptError) as excinfo:
            run_fetched_script(fetcher, url, run_log, runner=runner, privileged=True)
        assert excinfo.value.hits == ("rm -rf",)
        assert runner.calls == []

    def test_safe_script_runs_and_is_removed(self, fetcher, runner, run_log):
        url = "https://example.com/add_udev_rules.sh"
        fetcher.texts[url] = "#!/bin/bash\necho ok\n"
        run_fetched_script(fetcher, url, run_log, runner=runner, privileged=True)
        (cmd,) = runner.calls
        assert cmd[:2] == ["sudo", "bash"]
        assert not os.path.exists(cmd[2])

    def test_env_passed_through(self, fetcher, runner, run_log):
        url = "https://example.com/install.sh"
        fetcher.texts[url] = "echo hi\n"
        run_fetched_script(fetcher, url, run_log, runner=runner, interpreter="sh", env_vars={"RUNZSH": "no"})
        assert runner.calls[0][0] == "sh"
        assert runner.env[0] == {"RUNZSH": "no"}
