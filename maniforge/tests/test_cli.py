"""End-to-end tests for the command line with fake collaborators."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import MULTIFILE, X64_URL, X86_URL, FakeForge, FakeSniffer, detected

from maniforge.cli.main import build_parser, main
from maniforge.core.models import Architecture, InstallerType
from maniforge.core.serialization import read_manifest_directory

NEW_X64 = "https://example.com/downloads/testapp-2.0-x64.exe"
NEW_X86 = "https://example.com/downloads/testapp-2.0-x86.exe"
PACKAGE_DIR = Path("manifests/t/TestPublisher/TestApp")


def _new_sniffer() -> FakeSniffer:
    return FakeSniffer(
        {
            NEW_X64: [detected(Architecture.X64, sha256="B1")],
            NEW_X86: [detected(Architecture.X86, sha256="B2")],
        }
    )


def _same_hash_sniffer(first: str = "AAAA000000000000000000000000000000000000000000000000000000000001") -> FakeSniffer:
    return FakeSniffer(
        {
            X64_URL: [detected(Architecture.X64, sha256=first)],
            X86_URL: [
                detected(
                    Architecture.X86,
                    sha256="AAAA000000000000000000000000000000000000000000000000000000000002",
                )
            ],
        }
    )


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MANIFORGE_SETTINGS", str(tmp_path / "config" / "settings.yaml"))
    monkeypatch.setenv("MANIFORGE_DISABLE_TRACING", "1")


def test_parser_accepts_replace_without_value() -> None:
    args = build_parser().parse_args(["update", "A.B", "--replace"])

    assert args.replace == ""
    assert build_parser().parse_args(["update", "A.B"]).replace is None


def test_new_writes_valid_manifests(tmp_path: Path, make_services) -> None:
    url = "https://example.com/contoso-app-x64.msi"
    sniffer = FakeSniffer({url: [detected(Architecture.X64, InstallerType.MSI, sha256="C1")]})
    services = make_services(sniffer=sniffer)

    code = main(
        [
            "new",
            url,
            "--version",
            "1.0",
            "--publisher",
            "Contoso",
            "--name",
            "App",
            "--license",
            "MIT",
            "--short-description",
            "An app.",
            "--out",
            str(tmp_path),
        ],
        services=services,
    )

    assert code == 0
    written = read_manifest_directory(tmp_path / "manifests/c/Contoso/App/1.0")
    assert written.package_identifier == "Contoso.App"
    assert written.default_locale.publisher == "Contoso"
    assert written.installer.installers[0].installer_type is InstallerType.MSI
    assert services.prompter.asked[:3] == ["PackageLocale", "Publisher", "PackageName"]


def test_new_uses_installer_metadata_as_prompt_defaults(tmp_path: Path, make_services) -> None:
    url = "https://example.com/contoso-tool-x64.msi"
    sniffer = FakeSniffer(
        {
            url: [
                detected(
                    Architecture.X64,
                    InstallerType.MSI,
                    package_name="Tool",
                    publisher="Contoso Ltd",
                    package_version="3.2.1",
                    short_description="A tool.",
                )
            ]
        }
    )
    services = make_services(sniffer=sniffer)

    code = main(["new", url, "--license", "MIT", "--out", str(tmp_path)], services=services)

    assert code == 0
    written = read_manifest_directory(tmp_path / "manifests/c/ContosoLtd/Tool/3.2.1")
    assert written.package_identifier == "ContosoLtd.Tool"
    assert written.default_locale.publisher == "Contoso Ltd"
    assert written.default_locale.short_description == "A tool."


def test_new_refuses_existing_version_on_submit(tmp_path: Path, make_services) -> None:
    url = "https://example.com/contoso-app-x64.msi"
    forge = FakeForge({"Contoso.App": {"1.0": []}})
    services = make_services(
        forge=forge,
        sniffer=FakeSniffer({url: [detected(Architecture.X64, InstallerType.MSI)]}),
        answers={
            "Publisher": "Contoso",
            "PackageName": "App",
            "PackageVersion": "1.0",
            "License": "MIT",
            "ShortDescription": "An app.",
        },
    )

    code = main(["new", url, "--submit", "--out", str(tmp_path)], services=services)

    assert code == 1
    assert forge.submissions == []


def test_new_submits_pull_request(tmp_path: Path, make_services) -> None:
    url = "https://example.com/contoso-app-x64.msi"
    forge = FakeForge()
    services = make_services(
        forge=forge,
        sniffer=FakeSniffer({url: [detected(Architecture.X64, InstallerType.MSI)]}),
        answers={
            "Publisher": "Contoso",
            "PackageName": "App",
            "PackageVersion": "1.0",
            "License": "MIT",
            "ShortDescription": "An app.",
        },
    )

    code = main(["new", url, "--submit", "--out", str(tmp_path)], services=services)

    assert code == 0
    (submission,) = forge.submissions
    assert submission["title"] == "New version: Contoso.App version 1.0"
    assert submission["via_fork"] is True


def test_new_missing_required_answer_fails(tmp_path: Path, make_services) -> None:
    url = "https://example.com/contoso-app-x64.msi"
    services = make_services(sniffer=FakeSniffer({url: [detected(Architecture.X64, InstallerType.MSI)]}))

    assert main(["new", url, "--out", str(tmp_path)], services=services) == 1


def test_update_writes_and_submits(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_new_sniffer())

    code = main(
        [
            "update",
            "testpublisher.testapp",
            NEW_X64,
            NEW_X86,
            "--version",
            "2.0",
            "--submit",
            "--out",
            str(tmp_path),
        ],
        services=services,
    )

    assert code == 0
    written = read_manifest_directory(tmp_path / PACKAGE_DIR / "2.0")
    assert written.package_identifier == "TestPublisher.TestApp"
    assert [item.installer_sha256 for item in written.installer.installers] == ["B1", "B2"]
    (submission,) = fake_forge.submissions
    assert submission["replace_version"] is None
    assert submission["manifest_set"].package_version == "2.0"


def test_update_with_unchanged_hashes_is_not_submitted(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_same_hash_sniffer())

    code = main(
        ["update", "testpublisher.testapp", "--version", "1.11", "--submit", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 1
    assert fake_forge.submissions == []


def test_update_without_submit_allows_unchanged_hashes(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_same_hash_sniffer())

    code = main(
        ["update", "testpublisher.testapp", "--version", "1.11", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 0
    assert (tmp_path / PACKAGE_DIR / "1.11").is_dir()


def test_vanity_urls_replace_previous_version(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_same_hash_sniffer(first="C" * 64))

    code = main(
        ["update", "testpublisher.testapp", "--version", "1.11", "--submit", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 0
    assert fake_forge.submissions[0]["replace_version"] == "1.10"


def test_replace_flag_defaults_to_previous_version(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_new_sniffer())

    code = main(
        [
            "update",
            "testpublisher.testapp",
            NEW_X64,
            NEW_X86,
            "--version",
            "2.0",
            "--replace",
            "--submit",
            "--out",
            str(tmp_path),
        ],
        services=services,
    )

    assert code == 0
    assert fake_forge.submissions[0]["replace_version"] == "1.10"


def test_replace_of_same_version_is_rejected(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_new_sniffer())

    code = main(
        ["update", "testpublisher.testapp", NEW_X64, NEW_X86, "--replace", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 1


def test_update_with_missing_installer_url_fails(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, sniffer=_new_sniffer())

    code = main(
        ["update", "testpublisher.testapp", NEW_X64, "--version", "2.0", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 1
    assert services.downloader.requested == []


def test_update_unknown_package(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge)

    assert main(["update", "missing.app", NEW_X64, "--out", str(tmp_path)], services=services) == 1


def test_new_locale_adds_document(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, answers={"PackageName": "Test-App"})

    code = main(
        ["new-locale", "testpublisher.testapp", "--locale", "de_de", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 0
    written = read_manifest_directory(tmp_path / PACKAGE_DIR / "1.10")
    tags = sorted(locale.package_locale for locale in written.locales)
    assert tags == ["de-DE", "fr-FR"]
    german = next(locale for locale in written.locales if locale.package_locale == "de-DE")
    assert german.package_name == "Test-App"
    assert german.publisher == "Test Publisher"


def test_new_locale_rejects_existing_tag(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge)

    code = main(
        ["new-locale", "testpublisher.testapp", "--locale", "EN-us", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 1


def test_update_locale_edits_fields(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge, answers={"PackageName": "Appli Modifiée"})

    code = main(
        ["update-locale", "testpublisher.testapp", "--locale", "fr-fr", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 0
    written = read_manifest_directory(tmp_path / PACKAGE_DIR / "1.10")
    assert written.locales[0].package_name == "Appli Modifiée"
    assert written.default_locale.package_name == "Test App"


def test_update_locale_missing_tag(tmp_path: Path, make_services, fake_forge) -> None:
    services = make_services(forge=fake_forge)

    code = main(
        ["update-locale", "testpublisher.testapp", "--locale", "ja-JP", "--out", str(tmp_path)],
        services=services,
    )

    assert code == 1


def test_submit_local_directory(make_services) -> None:
    forge = FakeForge()
    services = make_services(forge=forge)

    assert main(["submit", str(MULTIFILE), "--no-fork"], services=services) == 0
    (submission,) = forge.submissions
    assert submission["via_fork"] is False
    assert submission["title"] == "New version: testpublisher.testapp version 1.10"


def test_submit_rejects_invalid_directory(tmp_path: Path, make_services) -> None:
    forge = FakeForge()
    (tmp_path / "broken.yaml").write_text("ManifestType: version\n", encoding="utf-8")

    assert main(["submit", str(tmp_path)], services=make_services(forge=forge)) == 1
    assert forge.submissions == []


def test_show_prints_manifests(make_services, fake_forge, capsys) -> None:
    assert main(["show", "TESTPUBLISHER.testapp"], services=make_services(forge=fake_forge)) == 0

    assert "PackageName: Test App" in capsys.readouterr().out


def test_cache_list_and_clean(make_services, capsys) -> None:
    services = make_services()
    services.downloader.download("https://example.com/a.exe")

    assert main(["cache", "list"], services=services) == 0
    assert "download-1.bin" in capsys.readouterr().out
    assert main(["cache", "clean", "--all"], services=services) == 0
    assert services.downloader.list_files() == []


def test_settings_stores_token(tmp_path: Path, make_services, capsys) -> None:
    code = main(["settings", "--store-token", "abc123"], services=make_services())

    assert code == 0
    assert (tmp_path / "config" / "token").read_text(encoding="utf-8") == "abc123\n"
    assert '"cleanup_days": 7' in capsys.readouterr().out
