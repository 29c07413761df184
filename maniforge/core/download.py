"""Installer downloads with a per-invocation URL cache."""

from __future__ import annotations

import hashlib
import logging
import socket
import tempfile
import time
from pathlib import Path
from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.parse import unquote, urlparse
from urllib.request import HTTPRedirectHandler, OpenerDirector, Request, build_opener

from maniforge import observability

from .errors import (
    DownloadError,
    DownloadHttpError,
    DownloadSizeExceededError,
    DownloadTimeoutError,
    InvalidUrlError,
)

logger = logging.getLogger("maniforge.download")

DEFAULT_DOWNLOAD_DIR = Path(tempfile.gettempdir()) / "maniforge"
DEFAULT_TIMEOUT_SECONDS = 300
_CHUNK_SIZE = 1024 * 1024


class _LimitedRedirectHandler(HTTPRedirectHandler):
    max_redirections = 2


def _default_opener() -> OpenerDirector:
    return build_opener(_LimitedRedirectHandler)


def _file_name(url: str, disposition_name: str | None) -> str:
    if disposition_name:
        return Path(disposition_name).name
    name = Path(unquote(urlparse(url).path)).name
    return name or "installer"


def _url_key(url: str) -> str:
    """Per-URL subdirectory so installers sharing a file name never collide."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


class DownloadCache:
    """Download installers once per URL and remember where they landed."""

    def __init__(
        self,
        directory: Path | None = None,
        *,
        max_size_mb: int | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        opener_factory: Callable[[], OpenerDirector] = _default_opener,
    ) -> None:
        self.directory = Path(directory) if directory else DEFAULT_DOWNLOAD_DIR
        self.max_size_mb = max_size_mb
        self.timeout = timeout
        self._opener_factory = opener_factory
        self._files: dict[str, Path] = {}

    def __contains__(self, url: str) -> bool:
        return url in self._files

    def download(self, url: str) -> Path:
        cached = self._files.get(url)
        if cached is not None and cached.exists():
            logger.debug("Using cached download for %s", url)
            observability.record_installer_download(url, cached.stat().st_size, True)
            return cached

        scheme = urlparse(url).scheme.lower()
        if scheme not in {"http", "https"}:
            raise InvalidUrlError(f"Installer URL must use http or https: {url}", url)

        logger.info("Downloading %s", url)
        request = Request(url, headers={"User-Agent": "maniforge"})
        limit = self.max_size_mb * 1024 * 1024 if self.max_size_mb else None
        try:
            with self._opener_factory().open(request, timeout=self.timeout) as response:
                length = response.headers.get("Content-Length")
                if limit is not None and length and int(length) > limit:
                    raise DownloadSizeExceededError(url, self.max_size_mb or 0)
                name = _file_name(response.geturl() or url, response.headers.get_filename())
                target = self.directory / _url_key(url) / name
                target.parent.mkdir(parents=True, exist_ok=True)
                size = 0
                with target.open("wb") as handle:
                    for chunk in iter(lambda: response.read(_CHUNK_SIZE), b""):
                        size += len(chunk)
                        if limit is not None and size > limit:
                            handle.close()
                            target.unlink(missing_ok=True)
                            raise DownloadSizeExceededError(url, self.max_size_mb or 0)
                        handle.write(chunk)
        except HTTPError as exc:
            raise DownloadHttpError(url, exc.code, str(exc.reason)) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise DownloadTimeoutError(f"Download of {url} timed out", url) from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise DownloadTimeoutError(f"Download of {url} timed out", url) from exc
            raise DownloadError(f"Failed to download {url}: {exc.reason}", url) from exc
        except ValueError as exc:
            raise InvalidUrlError(f"Invalid installer URL {url}: {exc}", url) from exc

        self._files[url] = target
        observability.record_installer_download(url, size, False)
        return target

    def list_files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(path for path in self.directory.rglob("*") if path.is_file())

    def clean(self, older_than_days: int | None = None) -> list[Path]:
        """Delete downloaded files, optionally only those older than N days."""
        cutoff = None if older_than_days is None else time.time() - older_than_days * 86400
        removed = []
        for path in self.list_files():
            if cutoff is not None and path.stat().st_mtime >= cutoff:
                continue
            path.unlink()
            removed.append(path)
            if path.parent != self.directory and not any(path.parent.iterdir()):
                path.parent.rmdir()
        for url in [url for url, path in self._files.items() if path in removed]:
            del self._files[url]
        logger.info("Removed %d cached installer(s) from %s", len(removed), self.directory)
        return removed
