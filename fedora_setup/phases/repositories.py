# fedora-setup/fedora_setup/phases/repositories.py

import os
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List

import requests

from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import from_transaction, install_missing, section, string_list

RPMFUSION_RELEASE_PACKAGES = ("rpmfusion-free-release", "rpmfusion-nonfree-release")


def _repos(ctx: StepContext) -> Dict:
    return section(ctx, "repositories")


def _install_repo_file(ctx: StepContext, content: str, dest: Path) -> None:
    """Writes `content` to a root-owned repo file (mode 0644) through `sudo install`."""
    fd, tmp_name = tempfile.mkstemp(prefix="fedora-setup-", suffix=".repo")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f_out:
            f_out.write(content)
        ctx.runner(["sudo", "install", "-m0644", tmp_name, str(dest)], capture_output=True, check=True,
                   logger=ctx.log.logger)
    finally:
        os.unlink(tmp_name)


def _repo_file_matches(dest: Path, content: str) -> bool:
    try:
        return dest.read_text(encoding="utf-8") == content
    except OSError:
        return False


# --- RPM Fusion ---

def _fedora_version(ctx: StepContext) -> str:
    if ctx.facts is not None and ctx.facts.fedora_version:
        return ctx.facts.fedora_version
    proc = ctx.runner(["rpm", "-E", "%fedora"], capture_output=True, check=True, logger=ctx.log.logger)
    return proc.stdout.strip()


def _rpmfusion(ctx: StepContext) -> StepResult:
    templates = _repos(ctx).get("rpmfusion", {})
    version = _fedora_version(ctx)
    urls = [templates[key].format(version=version) for key in ("free", "nonfree") if key in templates]
    if not urls:
        return StepResult.failed("No RPM Fusion release URLs configured")
    ctx.log.info(f"Adding RPM Fusion repositories for Fedora {version}...")
    return from_transaction(ctx.dnf.install(urls), "RPM Fusion repositories configured",
                            "Failed to add RPM Fusion repositories")


def _rpmfusion_tainted(ctx: StepContext) -> StepResult:
    return install_missing(ctx, string_list(_repos(ctx).get("rpmfusion_tainted")), "RPM Fusion tainted repositories")


def _workstation_repositories(ctx: StepContext) -> StepResult:
    return install_missing(ctx, string_list(_repos(ctx).get("workstation")), "workstation repository packages")


def _packages_present(key: str):
    def predicate(ctx: StepContext) -> bool:
        packages = string_list(_repos(ctx).get(key))
        return bool(packages) and not ctx.dnf.missing(packages)
    return predicate


# --- Repository enable/disable options ---

def _repo_options(ctx: StepContext) -> Dict[str, bool]:
    return {repo: str(value).strip() in ("1", "true") for repo, value in _repos(ctx).get("options", {}).items()}


def _repo_options_applied(ctx: StepContext) -> bool:
    enabled = ctx.dnf.enabled_repos()
    return all((repo in enabled) == want for repo, want in _repo_options(ctx).items())


def _repository_options(ctx: StepContext) -> StepResult:
    options = _repo_options(ctx)
    if not options:
        return StepResult.unchanged("No repository options configured")
    assignments = {f"{repo}.enabled": "1" if want else "0" for repo, want in options.items()}
    return from_transaction(ctx.dnf.setopt(assignments), "Repository options applied",
                            "Failed to apply repository options")


# --- 1Password ---

def onepassword_repo_content(settings: Dict[str, str]) -> str:
    return (
        f"[{settings.get('repo_id', '1password')}]\n"
        f"name={settings.get('name', '1Password Stable Channel')}\n"
        f"baseurl={settings['baseurl']}\n"
        "enabled=1\n"
        "gpgcheck=1\n"
        "repo_gpgcheck=0\n"
        f"gpgkey={settings['key_url']}\n"
    )


def _onepassword_repo_path(ctx: StepContext) -> Path:
    return ctx.paths.yum_repos_dir / _repos(ctx).get("onepassword", {}).get("repo_file", "1password.repo")


def _onepassword_configured(ctx: StepContext) -> bool:
    settings = _repos(ctx).get("onepassword", {})
    return _repo_file_matches(_onepassword_repo_path(ctx), onepassword_repo_content(settings))


def _onepassword_repository(ctx: StepContext) -> StepResult:
    settings = _repos(ctx).get("onepassword", {})
    if "baseurl" not in settings or "key_url" not in settings:
        return StepResult.failed("1Password repository is not fully configured (baseurl, key_url)")
    key = ctx.dnf.import_key(settings["key_url"])
    if not key.ok:
        ctx.log.warning(f"Could not import the 1Password signing key: {key.detail}")
    try:
        _install_repo_file(ctx, onepassword_repo_content(settings), _onepassword_repo_path(ctx))
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Failed to write {_onepassword_repo_path(ctx)}: {e}")
    return StepResult.ok("1Password repository added")


# --- Master PDF Editor ---

def _master_pdf_repository(ctx: StepContext) -> StepResult:
    settings = _repos(ctx).get("master_pdf", {})
    url = settings.get("repo_url")
    if not url:
        return StepResult.failed("No Master PDF Editor repository URL configured")
    dest = ctx.paths.yum_repos_dir / settings.get("repo_file", "master-pdf-editor.repo")
    try:
        content = ctx.fetcher.get_text(url)
    except requests.RequestException as e:
        return StepResult.failed(f"Failed to download Master PDF Editor repository: {e}")
    if _repo_file_matches(dest, content):
        return StepResult.unchanged("Master PDF Editor repository already configured")
    try:
        _install_repo_file(ctx, content, dest)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Failed to write {dest}: {e}")
    return StepResult.ok("Master PDF Editor repository added")


# --- Flathub ---

def _flathub(ctx: StepContext) -> Dict[str, str]:
    return _repos(ctx).get("flathub", {})


def _flathub_remote(ctx: StepContext) -> StepResult:
    flathub = _flathub(ctx)
    if not flathub.get("url"):
        return StepResult.failed("No Flathub URL configured")
    return from_transaction(ctx.flatpak.remote_add(flathub.get("name", "flathub"), flathub["url"]),
                            "Flathub repository configured", "Failed to add Flathub repository")


def steps() -> List[Step]:
    return [
        Step("rpmfusion", Phase.REPOSITORIES, _rpmfusion, "Adding RPM Fusion repositories",
             is_satisfied=lambda ctx: not ctx.dnf.missing(list(RPMFUSION_RELEASE_PACKAGES))),
        Step("rpmfusion_tainted", Phase.REPOSITORIES, _rpmfusion_tainted, "Adding RPM Fusion tainted repositories",
             is_satisfied=_packages_present("rpmfusion_tainted")),
        Step("workstation_repositories", Phase.REPOSITORIES, _workstation_repositories,
             "Adding Fedora Workstation repositories", is_satisfied=_packages_present("workstation")),
        Step("repository_options", Phase.REPOSITORIES, _repository_options, "Configuring third-party repositories",
             is_satisfied=_repo_options_applied),
        Step("onepassword_repository", Phase.REPOSITORIES, _onepassword_repository, "Adding 1Password repository",
             is_satisfied=_onepassword_configured),
        Step("master_pdf_repository", Phase.REPOSITORIES, _master_pdf_repository,
             "Adding Master PDF Editor repository"),
        Step("flathub_remote", Phase.REPOSITORIES, _flathub_remote, "Adding Flathub repository",
             is_satisfied=lambda ctx: ctx.flatpak.has_remote(_flathub(ctx).get("name", "flathub"))),
    ]
