"""Tests for the manifest codec and repository layout."""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath

import pytest

from conftest import MULTIFILE, fixture_set

from maniforge import __version__
from maniforge.core.errors import ManifestFormatError
from maniforge.core.models import DefaultLocaleManifest, InstallerManifest, VersionManifest
from maniforge.core.serialization import (
    ManifestFormat,
    deserialize,
    load_manifest_set,
    manifest_dir_path,
    manifest_file_name,
    read_manifest_directory,
    render_manifest_set,
    serialize,
    write_manifest_set,
)


def test_fixture_versions_stay_strings() -> None:
    manifest_set = read_manifest_directory(MULTIFILE)

    assert manifest_set.package_version == "1.10"
    assert manifest_set.version.default_locale == "en-US"
    assert len(manifest_set.locales) == 1


def test_yaml_output_header_and_field_order() -> None:
    document = VersionManifest(
        package_identifier="Contoso.App", package_version="1.10", default_locale="en-US"
    )

    text = serialize(document)

    lines = text.splitlines()
    assert lines[0] == f"# Created with maniforge {__version__}"
    assert lines[1] == (
        "# yaml-language-server: $schema=https://aka.ms/winget-manifest.version.1.10.0.schema.json"
    )
    assert lines[2] == ""
    assert lines[3] == "PackageIdentifier: Contoso.App"
    assert "PackageVersion: '1.10'" in lines
    assert lines[-1] == "ManifestVersion: 1.10.0"


def test_multiline_strings_use_literal_blocks() -> None:
    document = DefaultLocaleManifest(package_locale="en-US", release_notes="one\ntwo")

    text = serialize(document)

    assert "ReleaseNotes: |-\n  one\n  two\n" in text


def test_json_output_starts_with_schema() -> None:
    document = VersionManifest(package_identifier="Contoso.App", package_version="2")

    payload = json.loads(serialize(document, ManifestFormat.JSON))

    assert list(payload)[0] == "$schema"
    assert payload["PackageIdentifier"] == "Contoso.App"
    assert "DefaultLocale" not in payload


def test_json_input_is_detected_and_schema_dropped() -> None:
    text = json.dumps(
        {
            "$schema": "https://aka.ms/winget-manifest.version.1.6.0.schema.json",
            "PackageIdentifier": "Contoso.App",
            "PackageVersion": "1.0",
            "ManifestType": "version",
            "ManifestVersion": "1.6.0",
        }
    )

    (document,) = deserialize(text)

    assert isinstance(document, VersionManifest)
    assert "$schema" not in document.model_dump(by_alias=True)


def test_byte_order_mark_is_ignored() -> None:
    text = "\ufeffPackageIdentifier: Contoso.App\nManifestType: version\n"

    (document,) = deserialize(text)

    assert document.package_identifier == "Contoso.App"


@pytest.mark.parametrize("text", ["", "   \n", "\ufeff"])
def test_empty_content_is_rejected(text: str) -> None:
    with pytest.raises(ManifestFormatError, match="empty"):
        deserialize(text)


def test_malformed_content_is_rejected() -> None:
    with pytest.raises(ManifestFormatError):
        deserialize("PackageIdentifier: [unterminated")
    with pytest.raises(ManifestFormatError):
        deserialize("- just\n- a list\n")


def test_reserialization_is_stable() -> None:
    for document in fixture_set().documents():
        text = serialize(document)
        (reloaded,) = deserialize(text)
        assert serialize(reloaded) == text


def test_manifest_file_names() -> None:
    manifest_set = fixture_set()

    names = sorted(render_manifest_set(manifest_set))

    assert names == [
        "testpublisher.testapp.installer.yaml",
        "testpublisher.testapp.locale.en-US.yaml",
        "testpublisher.testapp.locale.fr-FR.yaml",
        "testpublisher.testapp.yaml",
    ]
    assert manifest_file_name(InstallerManifest(package_identifier="A.B"), ManifestFormat.JSON) == (
        "A.B.installer.json"
    )


def test_manifest_dir_path() -> None:
    assert manifest_dir_path("Microsoft.VisualStudio.Code", "1.90.0") == PurePosixPath(
        "manifests/m/Microsoft/VisualStudio/Code/1.90.0"
    )


def test_write_and_read_back(tmp_path: Path) -> None:
    written = write_manifest_set(fixture_set(), tmp_path / "out")

    assert len(written) == 4
    reloaded = read_manifest_directory(tmp_path / "out")
    assert reloaded.package_version == "1.10"
    assert reloaded.installer.installers[1].product_code == "{TESTAPP-X86}"


def test_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(ManifestFormatError, match="not found"):
        read_manifest_directory(tmp_path / "missing")


def test_load_manifest_set_requires_documents() -> None:
    with pytest.raises(ManifestFormatError):
        load_manifest_set([])
