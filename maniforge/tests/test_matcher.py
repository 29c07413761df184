"""Tests for matching sniffed installers against existing manifest entries."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import X64_URL, X86_URL, FakeSniffer, detected, make_installer

from maniforge.core.errors import PackageParseError
from maniforge.core.matcher import InstallerUrlArgument, match_installers
from maniforge.core.models import (
    AppsAndFeaturesEntry,
    Architecture,
    InstallerSwitches,
    InstallerType,
    Scope,
)

NEW_X64 = "https://example.com/downloads/testapp-2.0-x64.exe"
NEW_X86 = "https://example.com/downloads/testapp-2.0-x86.exe"


def _files(*urls: str) -> dict[str, Path]:
    return {url: Path(f"/tmp/{index}.bin") for index, url in enumerate(urls)}


def _args(*urls: str) -> list[InstallerUrlArgument]:
    return [InstallerUrlArgument(url) for url in urls]


def test_cardinality_discrepancy_fails_before_sniffing() -> None:
    existing = [make_installer(X64_URL), make_installer(X86_URL, Architecture.X86)]
    sniffer = FakeSniffer()

    result = match_installers(existing, _args(NEW_X64), _files(NEW_X64), sniffer)

    assert not result.success
    assert result.discrepancy
    assert result.installers == existing
    assert sniffer.calls == []


def test_single_match_merges_detected_fields_and_keeps_user_fields() -> None:
    switches = InstallerSwitches(silent="/VERYSILENT", custom="/NORESTART")
    existing = [
        make_installer(
            X64_URL,
            sha256="AAA",
            scope=Scope.MACHINE,
            installer_switches=switches,
            product_code="{OLD}",
        )
    ]
    sniffer = FakeSniffer({NEW_X64: [detected(Architecture.X64, sha256="BBB")]})

    result = match_installers(existing, _args(NEW_X64), _files(NEW_X64), sniffer)

    assert result.success
    merged = result.installers[0]
    assert merged.installer_url == NEW_X64
    assert merged.installer_sha256 == "BBB"
    assert merged.scope is Scope.MACHINE
    assert merged.installer_switches == switches
    assert merged.product_code == "{OLD}"
    assert existing[0].installer_sha256 == "AAA"


def test_detected_product_code_overrides_previous_value() -> None:
    existing = [make_installer(X64_URL, installer_type=InstallerType.MSI, product_code="{OLD}")]
    sniffer = FakeSniffer(
        {NEW_X64: [detected(Architecture.X64, InstallerType.MSI, product_code="{NEW}")]}
    )

    result = match_installers(existing, _args(NEW_X64), _files(NEW_X64), sniffer)

    assert result.installers[0].product_code == "{NEW}"


def test_same_url_new_hash_merges_in_place() -> None:
    existing = [make_installer(X64_URL, sha256="AAA")]
    sniffer = FakeSniffer({X64_URL: [detected(Architecture.X64, sha256="BBB")]})

    result = match_installers(existing, _args(X64_URL), _files(X64_URL), sniffer)

    assert result.success
    assert result.installers[0].installer_sha256 == "BBB"
    assert result.installers[0].installer_url == X64_URL


def test_installers_match_by_architecture_and_keep_order() -> None:
    existing = [make_installer(X64_URL), make_installer(X86_URL, Architecture.X86)]
    sniffer = FakeSniffer(
        {
            NEW_X86: [detected(Architecture.X86, sha256="X86")],
            NEW_X64: [detected(Architecture.X64, sha256="X64")],
        }
    )

    result = match_installers(existing, _args(NEW_X86, NEW_X64), _files(NEW_X86, NEW_X64), sniffer)

    assert result.success
    assert [item.installer_url for item in result.installers] == [NEW_X64, NEW_X86]
    assert [item.installer_sha256 for item in result.installers] == ["X64", "X86"]


def test_root_installer_type_is_inherited_for_matching() -> None:
    existing = [make_installer(X64_URL, installer_type=None)]
    sniffer = FakeSniffer({NEW_X64: [detected(Architecture.X64, InstallerType.INNO)]})

    result = match_installers(
        existing,
        _args(NEW_X64),
        _files(NEW_X64),
        sniffer,
        root_installer_type=InstallerType.INNO,
    )

    assert result.success


def test_type_mismatch_is_unmatched_and_nothing_changes() -> None:
    existing = [make_installer(X64_URL, installer_type=InstallerType.MSI)]
    sniffer = FakeSniffer({NEW_X64: [detected(Architecture.X64, InstallerType.EXE)]})

    result = match_installers(existing, _args(NEW_X64), _files(NEW_X64), sniffer)

    assert not result.success
    assert not result.discrepancy
    assert [item.installer_url for item in result.unmatched] == [NEW_X64]
    assert result.unclaimed == existing
    assert result.installers == existing


def test_wix_and_msi_are_the_same_family() -> None:
    existing = [make_installer(X64_URL, installer_type=InstallerType.WIX)]
    sniffer = FakeSniffer({NEW_X64: [detected(Architecture.X64, InstallerType.MSI)]})

    result = match_installers(existing, _args(NEW_X64), _files(NEW_X64), sniffer)

    assert result.success
    assert result.installers[0].installer_type is InstallerType.WIX


def test_ambiguous_architecture_match_is_multiple_matched() -> None:
    url_a = "https://example.com/a/setup.msi"
    url_b = "https://example.com/b/setup.msi"
    new_url = "https://example.com/c/setup.msi"
    existing = [
        make_installer(url_a, installer_type=InstallerType.MSI),
        make_installer(url_b, installer_type=InstallerType.MSI),
    ]
    other = "https://example.com/d/setup.msi"
    sniffer = FakeSniffer(
        {
            new_url: [detected(Architecture.X64, InstallerType.MSI)],
            other: [detected(Architecture.X64, InstallerType.MSI, sha256="CCC")],
        }
    )

    result = match_installers(
        existing, _args(new_url, other), _files(new_url, other), sniffer
    )

    assert not result.success
    assert [item.installer_url for item in result.multiple_matched] == [new_url, other]
    assert result.installers == existing


def test_exact_url_wins_over_ambiguous_architecture() -> None:
    url_a = "https://example.com/a/setup.msi"
    url_b = "https://example.com/b/setup.msi"
    existing = [
        make_installer(url_a, installer_type=InstallerType.MSI, sha256="A"),
        make_installer(url_b, installer_type=InstallerType.MSI, sha256="B"),
    ]
    sniffer = FakeSniffer(
        {
            url_a: [detected(Architecture.X64, InstallerType.MSI, sha256="A2")],
            url_b: [detected(Architecture.X64, InstallerType.MSI, sha256="B2")],
        }
    )

    result = match_installers(existing, _args(url_a, url_b), _files(url_a, url_b), sniffer)

    assert result.success
    assert [item.installer_sha256 for item in result.installers] == ["A2", "B2"]


def test_scope_override_selects_between_same_url_installers() -> None:
    url = "https://example.com/setup.exe"
    existing = [
        make_installer(url, scope=Scope.USER, installer_switches=InstallerSwitches(custom="/user")),
        make_installer(url, scope=Scope.MACHINE, installer_switches=InstallerSwitches(custom="/all")),
    ]
    new_url = "https://example.com/v2/setup.exe"
    sniffer = FakeSniffer({new_url: [detected(Architecture.X64, sha256="NEW")]})
    arguments = [
        InstallerUrlArgument(new_url, scope=Scope.MACHINE),
        InstallerUrlArgument(new_url, scope=Scope.USER),
    ]

    result = match_installers(existing, arguments, _files(new_url), sniffer)

    assert result.success
    assert [item.installer_switches.custom for item in result.installers] == ["/user", "/all"]
    assert all(item.installer_sha256 == "NEW" for item in result.installers)


def test_architecture_override_and_display_version_are_applied() -> None:
    existing = [make_installer(X86_URL, Architecture.X86)]
    new_url = "https://example.com/setup.exe"
    sniffer = FakeSniffer({new_url: [detected(Architecture.X64)]})
    arguments = [InstallerUrlArgument(new_url, architecture=Architecture.X86, display_version="2.0.1")]

    result = match_installers(existing, arguments, _files(new_url), sniffer)

    assert result.success
    assert result.installers[0].architecture is Architecture.X86
    assert result.installers[0].apps_and_features_entries == [
        AppsAndFeaturesEntry(display_version="2.0.1")
    ]


def test_binary_architecture_is_tried_after_url_architecture() -> None:
    existing = [make_installer("https://example.com/app.exe", Architecture.X64)]
    # URL claims x86 but the binary is x64.
    new_url = "https://example.com/app-x86.exe"
    sniffer = FakeSniffer({new_url: [detected(Architecture.X64)]})

    result = match_installers(existing, _args(new_url), _files(new_url), sniffer)

    assert result.success
    assert result.detected_architectures[0].has_mismatch


def test_nested_architectures_each_claim_one_installer() -> None:
    url = "https://example.com/portable.zip"
    existing = [
        make_installer(url, Architecture.X64, InstallerType.ZIP),
        make_installer(url, Architecture.ARM64, InstallerType.ZIP),
    ]
    nested = frozenset({Architecture.X64, Architecture.ARM64})
    new_url = "https://example.com/v2/portable.zip"
    sniffer = FakeSniffer(
        {
            new_url: [
                detected(Architecture.ARM64, InstallerType.ZIP, nested_architectures=nested),
                detected(Architecture.X64, InstallerType.ZIP, nested_architectures=nested),
            ]
        }
    )

    result = match_installers(existing, _args(new_url), _files(new_url), sniffer)

    assert result.success
    assert [item.architecture for item in result.installers] == [
        Architecture.X64,
        Architecture.ARM64,
    ]
    assert all(item.installer_url == new_url for item in result.installers)


def test_unparseable_package_raises() -> None:
    existing = [make_installer(X64_URL)]
    sniffer = FakeSniffer({})

    with pytest.raises(PackageParseError) as excinfo:
        match_installers(existing, _args(NEW_X64), _files(NEW_X64), sniffer)

    assert excinfo.value.urls == [NEW_X64]


def test_same_url_matches_when_architecture_is_unknown() -> None:
    url = "https://example.com/downloads/app.msi"
    existing = [
        make_installer(url, Architecture.X64, InstallerType.MSI, sha256="AAA", installer_locale="fr-FR")
    ]
    sniffer = FakeSniffer(
        {url: [detected(None, InstallerType.MSI, sha256="BBB", installer_locale="en-US")]}
    )

    result = match_installers(existing, _args(url), _files(url), sniffer)

    assert result.success
    merged = result.installers[0]
    assert merged.installer_sha256 == "BBB"
    assert merged.architecture is Architecture.X64
    assert merged.installer_locale == "fr-FR"


def test_detected_installer_locale_fills_a_missing_value() -> None:
    url = "https://example.com/downloads/app.msi"
    existing = [make_installer(url, Architecture.X64, InstallerType.MSI)]
    sniffer = FakeSniffer(
        {url: [detected(Architecture.X64, InstallerType.MSI, installer_locale="de-DE")]}
    )

    result = match_installers(existing, _args(url), _files(url), sniffer)

    assert result.installers[0].installer_locale == "de-DE"


def test_unknown_architecture_with_new_url_stays_unmatched() -> None:
    old_url = "https://example.com/downloads/app-1.0.msi"
    new_url = "https://example.com/downloads/app-2.0.msi"
    existing = [make_installer(old_url, Architecture.X64, InstallerType.MSI)]
    sniffer = FakeSniffer({new_url: [detected(None, InstallerType.MSI)]})

    result = match_installers(existing, _args(new_url), _files(new_url), sniffer)

    assert not result.success
    assert [item.installer_url for item in result.unmatched] == [new_url]
