"""Match freshly sniffed installers against the entries of an existing manifest.

Identity rules, applied to the pool of not-yet-claimed existing installers:

* the candidate's installer type must equal the existing installer's
  effective type (its own, else the manifest root's); ``wix``/``msi`` and
  ``appx``/``msix`` count as the same family;
* a scope override on the URL argument excludes installers whose effective
  scope is set to something else;
* tier 1 looks for the exact ``InstallerUrl`` with the resolved
  architecture (override, else URL-derived, else binary), or with any
  architecture when none could be resolved;
* tier 2 ignores the URL and tries the resolved architecture, then the
  binary architecture.

One hit merges, several hits are ambiguous, none is unmatched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from .errors import PackageParseError
from .models import (
    AppsAndFeaturesEntry,
    Architecture,
    Installer,
    InstallerType,
    Scope,
)
from .sniffer import DetectedInstaller, Sniffer, architecture_from_url

logger = logging.getLogger("maniforge.matcher")

_TYPE_FAMILIES: dict[InstallerType, InstallerType] = {
    InstallerType.WIX: InstallerType.MSI,
    InstallerType.APPX: InstallerType.MSIX,
}


@dataclass(frozen=True)
class InstallerUrlArgument:
    """An installer URL plus the optional ``|`` modifiers given on the command line."""

    url: str
    architecture: Architecture | None = None
    scope: Scope | None = None
    display_version: str | None = None


@dataclass(frozen=True)
class InstallerMetadata:
    """Architectures seen for one URL; used only for mismatch warnings."""

    url: str
    url_architecture: Architecture | None
    binary_architecture: Architecture | None
    nested_architectures: frozenset[Architecture] = field(default_factory=frozenset)

    @property
    def has_mismatch(self) -> bool:
        return (
            self.url_architecture is not None
            and self.binary_architecture is not None
            and self.url_architecture != self.binary_architecture
        )


@dataclass(frozen=True)
class Candidate:
    argument: InstallerUrlArgument
    detected: DetectedInstaller
    installer: Installer

    @property
    def binary_architecture(self) -> Architecture | None:
        return self.detected.architecture


@dataclass
class MatchResult:
    success: bool
    installers: list[Installer]
    discrepancy: bool = False
    unmatched: list[Installer] = field(default_factory=list)
    multiple_matched: list[Installer] = field(default_factory=list)
    unclaimed: list[Installer] = field(default_factory=list)
    detected_architectures: list[InstallerMetadata] = field(default_factory=list)


def _family(installer_type: InstallerType | None) -> InstallerType | None:
    if installer_type is None:
        return None
    return _TYPE_FAMILIES.get(installer_type, installer_type)


def detect_installers(
    arguments: Sequence[InstallerUrlArgument],
    package_files: Mapping[str, Path],
    sniffer: Sniffer,
) -> tuple[list[Candidate], list[InstallerMetadata]]:
    """Sniff every downloaded file and build one candidate installer per detection."""
    candidates: list[Candidate] = []
    metadata: list[InstallerMetadata] = []
    failed: list[str] = []
    for argument in arguments:
        detections = sniffer.sniff(package_files[argument.url], argument.url)
        if not detections:
            failed.append(argument.url)
            continue
        url_architecture = architecture_from_url(argument.url)
        for detected in detections:
            resolved = argument.architecture or url_architecture or detected.architecture
            installer = Installer(
                architecture=resolved,
                installer_type=detected.installer_type,
                installer_url=argument.url,
                installer_sha256=detected.sha256,
                signature_sha256=detected.signature_sha256,
                product_code=detected.product_code,
                package_family_name=detected.package_family_name,
                installer_locale=detected.installer_locale,
                minimum_os_version=detected.minimum_os_version,
                platform=list(detected.platform) if detected.platform else None,
                scope=argument.scope,
                apps_and_features_entries=(
                    [AppsAndFeaturesEntry(display_version=argument.display_version)]
                    if argument.display_version
                    else None
                ),
            )
            candidates.append(Candidate(argument, detected, installer))
            metadata.append(
                InstallerMetadata(
                    url=argument.url,
                    url_architecture=url_architecture,
                    binary_architecture=detected.architecture,
                    nested_architectures=detected.nested_architectures,
                )
            )
    if failed:
        raise PackageParseError(failed)
    return candidates, metadata


def _eligible(
    existing: Installer,
    candidate: Candidate,
    root_type: InstallerType | None,
    root_scope: Scope | None,
) -> bool:
    if _family(existing.installer_type or root_type) != _family(candidate.installer.installer_type):
        return False
    wanted_scope = candidate.argument.scope
    effective_scope = existing.scope or root_scope
    if wanted_scope is not None and effective_scope is not None and effective_scope != wanted_scope:
        return False
    return True


def _find_matches(
    pool: list[int],
    existing: Sequence[Installer],
    candidate: Candidate,
    root_type: InstallerType | None,
    root_scope: Scope | None,
) -> list[int]:
    eligible = [
        index for index in pool if _eligible(existing[index], candidate, root_type, root_scope)
    ]
    resolved = candidate.installer.architecture
    # An unknown architecture cannot contradict an exact URL match.
    exact = [
        index
        for index in eligible
        if existing[index].installer_url == candidate.installer.installer_url
        and (resolved is None or existing[index].architecture == resolved)
    ]
    if exact:
        return exact
    for architecture in (resolved, candidate.binary_architecture):
        if architecture is None:
            continue
        hits = [index for index in eligible if existing[index].architecture == architecture]
        if hits:
            return hits
    return []


def merge_detected(existing: Installer, candidate: Candidate) -> Installer:
    """Overwrite detected fields of ``existing``; user-authored fields survive."""
    new = candidate.installer
    update: dict[str, object] = {
        "installer_url": new.installer_url,
        "installer_sha256": new.installer_sha256,
        "signature_sha256": new.signature_sha256,
    }
    for name in ("product_code", "package_family_name", "minimum_os_version", "platform"):
        value = getattr(new, name)
        if value is not None:
            update[name] = value
    if existing.installer_locale is None and new.installer_locale is not None:
        update["installer_locale"] = new.installer_locale
    argument = candidate.argument
    if argument.architecture is not None:
        update["architecture"] = argument.architecture
    if argument.scope is not None and existing.scope != argument.scope:
        update["scope"] = argument.scope
    if argument.display_version:
        entries = existing.apps_and_features_entries or [AppsAndFeaturesEntry()]
        update["apps_and_features_entries"] = [
            entry.model_copy(update={"display_version": argument.display_version})
            for entry in entries
        ]
    return existing.model_copy(update=update)


def match_installers(
    existing: Sequence[Installer],
    arguments: Sequence[InstallerUrlArgument],
    package_files: Mapping[str, Path],
    sniffer: Sniffer,
    *,
    root_installer_type: InstallerType | None = None,
    root_scope: Scope | None = None,
) -> MatchResult:
    """Reconcile new installer files with ``existing`` without mutating it.

    The returned ``installers`` list is the merged list on success and the
    untouched original list otherwise.
    """
    original = list(existing)
    existing_urls = {installer.installer_url for installer in original}
    new_urls = {argument.url for argument in arguments}
    if len(existing_urls) != len(new_urls):
        logger.warning(
            "Installer count mismatch: manifest has %d distinct URL(s), %d supplied",
            len(existing_urls),
            len(new_urls),
        )
        return MatchResult(success=False, installers=original, discrepancy=True)

    candidates, metadata = detect_installers(arguments, package_files, sniffer)

    pool = list(range(len(original)))
    merged: dict[int, Installer] = {}
    unmatched: list[Installer] = []
    multiple: list[Installer] = []
    for candidate in candidates:
        hits = _find_matches(pool, original, candidate, root_installer_type, root_scope)
        if len(hits) == 1:
            index = hits[0]
            pool.remove(index)
            merged[index] = merge_detected(original[index], candidate)
        elif hits:
            logger.debug(
                "Installer %s (%s, %s) matches %d existing installers",
                candidate.installer.installer_url,
                candidate.installer.architecture,
                candidate.installer.installer_type,
                len(hits),
            )
            multiple.append(candidate.installer)
        else:
            unmatched.append(candidate.installer)

    unclaimed = [original[index] for index in pool]
    success = not unmatched and not multiple and not unclaimed
    return MatchResult(
        success=success,
        installers=[merged.get(index, item) for index, item in enumerate(original)]
        if success
        else original,
        unmatched=unmatched,
        multiple_matched=multiple,
        unclaimed=unclaimed,
        detected_architectures=metadata,
    )
