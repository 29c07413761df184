"""Shared builders and fakes for the maniforge test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from maniforge.cli.main import Services
from maniforge.cli.prompt import ScriptedPrompter
from maniforge.core.download import DownloadCache
from maniforge.core.forge import PullRequest
from maniforge.core.models import (
    Architecture,
    Installer,
    InstallerManifest,
    InstallerType,
    ManifestSet,
)
from maniforge.core.serialization import ManifestFormat, load_manifest_set, manifest_files
from maniforge.core.settings import Settings
from maniforge.core.sniffer import DetectedInstaller

FIXTURES = Path(__file__).parent / "fixtures"
MULTIFILE = FIXTURES / "multifile"
X64_URL = "https://example.com/downloads/testapp-1.10-x64.exe"
X86_URL = "https://example.com/downloads/testapp-1.10-x86.exe"


def fixture_texts(directory: Path = MULTIFILE) -> list[str]:
    return [path.read_text(encoding="utf-8") for path in manifest_files(directory)]


def fixture_set() -> ManifestSet:
    return load_manifest_set(fixture_texts())


def make_installer(
    url: str = X64_URL,
    architecture: Architecture | None = Architecture.X64,
    installer_type: InstallerType | None = InstallerType.EXE,
    sha256: str = "AAA",
    **extra: Any,
) -> Installer:
    return Installer(
        installer_url=url,
        architecture=architecture,
        installer_type=installer_type,
        installer_sha256=sha256,
        **extra,
    )


def make_installer_manifest(*installers: Installer, **root: Any) -> InstallerManifest:
    return InstallerManifest(
        package_identifier="TestPublisher.TestApp",
        package_version="1.0.0",
        installers=list(installers),
        **root,
    )


def detected(
    architecture: Architecture | None = Architecture.X64,
    installer_type: InstallerType = InstallerType.EXE,
    sha256: str = "BBB",
    **extra: Any,
) -> DetectedInstaller:
    return DetectedInstaller(
        installer_type=installer_type, sha256=sha256, architecture=architecture, **extra
    )


class FakeSniffer:
    """Return canned detections per URL and remember what was sniffed."""

    def __init__(self, results: dict[str, list[DetectedInstaller]] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[tuple[Path, str]] = []

    def sniff(self, path: Path, url: str) -> list[DetectedInstaller]:
        self.calls.append((path, url))
        return list(self.results.get(url, []))


class FakeDownloader(DownloadCache):
    """Write a placeholder file per URL instead of touching the network."""

    def __init__(self, directory: Path) -> None:
        super().__init__(directory)
        self.requested: list[str] = []

    def download(self, url: str) -> Path:
        self.requested.append(url)
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / f"download-{len(self.requested)}.bin"
        target.write_bytes(url.encode("utf-8"))
        return target


class FakeForge:
    """In-memory repository: ``packages[id][version]`` holds manifest texts."""

    def __init__(self, packages: dict[str, dict[str, list[str]]] | None = None) -> None:
        self.packages = packages or {}
        self.submissions: list[dict[str, Any]] = []

    def find_package_id(self, fuzzy_id: str) -> str | None:
        for name in self.packages:
            if name.lower() == fuzzy_id.lower():
                return name
        return None

    def get_latest_version(self, package_identifier: str) -> str:
        return sorted(self.packages[package_identifier])[-1]

    def version_exists(self, package_identifier: str, version: str) -> bool:
        return version in self.packages.get(package_identifier, {})

    def get_manifest_content(self, package_identifier: str, version: str | None = None) -> list[str]:
        version = version or self.get_latest_version(package_identifier)
        return list(self.packages[package_identifier][version])

    def submit_pull_request(
        self,
        manifest_set: ManifestSet,
        *,
        via_fork: bool = True,
        title: str | None = None,
        replace_version: str | None = None,
        fmt: ManifestFormat = ManifestFormat.YAML,
    ) -> PullRequest:
        self.submissions.append(
            {
                "manifest_set": manifest_set,
                "via_fork": via_fork,
                "title": title,
                "replace_version": replace_version,
                "format": fmt,
            }
        )
        return PullRequest(number=len(self.submissions), url="https://github.com/pr/1")


@pytest.fixture
def fake_forge() -> FakeForge:
    return FakeForge({"TestPublisher.TestApp": {"1.10": fixture_texts()}})


@pytest.fixture
def make_services(tmp_path: Path):
    def factory(
        *,
        forge: FakeForge | None = None,
        sniffer: FakeSniffer | None = None,
        answers: dict[str, str] | None = None,
    ) -> Services:
        return Services(
            settings=Settings(),
            downloader=FakeDownloader(tmp_path / "cache"),
            sniffer=sniffer or FakeSniffer(),
            prompter=ScriptedPrompter(answers),
            forge_factory=lambda token: forge or FakeForge(),
        )

    return factory
