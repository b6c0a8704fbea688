# fedora-setup/fedora_setup/fetch.py

import logging
from pathlib import Path
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from urllib3.util.retry import Retry

from fedora_setup import console_output as con
from fedora_setup.system_utils import default_script_logger

# (connect, read) seconds
DEFAULT_TIMEOUT = (10, 60)
USER_AGENT = "fedora-setup/1.1"
CHUNK_SIZE = 1024 * 256


def build_session(retries: int = 3, backoff_factor: float = 1.0) -> requests.Session:
    """Session that retries connection errors and 429/5xx responses with backoff."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "HEAD"}),
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = USER_AGENT
    return session


class HttpFetcher:
    """Generic HTTP fetch interface used by version probes and downloads.

    Every method raises requests.RequestException on failure; callers turn
    that into a recoverable result.
    """

    def __init__(self, session: Optional[requests.Session] = None, logger: Optional[logging.Logger] = None,
                 show_progress: bool = True):
        self.session = session or build_session()
        self.log = logger or default_script_logger
        self.show_progress = show_progress

    def get_text(self, url: str) -> str:
        self.log.debug(f"GET {url}")
        response = self.session.get(url, timeout=DEFAULT_TIMEOUT)
        response.raise_for_status()
        return response.text

    def get_json(self, url: str) -> Any:
        self.log.debug(f"GET (json) {url}")
        response = self.session.get(url, timeout=DEFAULT_TIMEOUT, headers={"Accept": "application/json"})
        response.raise_for_status()
        return response.json()

    def resolve_redirect(self, url: str) -> str:
        """Final URL after following redirects, without downloading the body."""
        response = self.session.head(url, allow_redirects=True, timeout=DEFAULT_TIMEOUT)
        if response.status_code in (403, 405):
            # Some CDNs refuse HEAD; a streamed GET stops after the headers.
            with self.session.get(url, allow_redirects=True, stream=True, timeout=DEFAULT_TIMEOUT) as get_response:
                get_response.raise_for_status()
                final_url = get_response.url
        else:
            response.raise_for_status()
            final_url = response.url
        self.log.debug(f"Resolved {url} -> {final_url}")
        return final_url

    def download(self, url: str, dest: Path) -> Path:
        """Streams `url` into `dest`, showing a Rich progress bar. Returns `dest`."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        self.log.info(f"Downloading {url} -> {dest}")
        with self.session.get(url, stream=True, timeout=DEFAULT_TIMEOUT) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length", 0)) or None
            with open(dest, "wb") as f_out, Progress(
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                TimeRemainingColumn(),
                console=con.console,
                transient=True,
                disable=not self.show_progress,
            ) as progress:
                task = progress.add_task(dest.name, total=total)
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f_out.write(chunk)
                        progress.update(task, advance=len(chunk))
        return dest
