"""Create and update pipelines over a ``ManifestSet``."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence

from .errors import InstallerArgumentError
from .fields import (
    DEFAULT_LOCALE_FIELDS,
    INSTALLER_ROOT_FIELDS,
)
from .matcher import (
    InstallerMetadata,
    InstallerUrlArgument,
    MatchResult,
    detect_installers,
    match_installers,
)
from .models import (
    CURRENT_MANIFEST_VERSION,
    Architecture,
    DefaultLocaleManifest,
    Installer,
    InstallerManifest,
    ManifestSet,
    Scope,
    SingletonManifest,
    VersionManifest,
)
from .reconcile import (
    remove_empty_fields,
    shift_installer_fields_to_root_level,
    shift_root_fields_to_installer_level,
)
from .sniffer import DetectedInstaller, Sniffer

logger = logging.getLogger("maniforge.merge")

MAX_URL_ARGUMENT_SEGMENTS = 4
DEFAULT_LOCALE = "en-US"

_DOCUMENT_KEYS = frozenset({"manifest_type", "manifest_version"})


class Downloader(Protocol):
    def download(self, url: str) -> Path:
        ...


# -----------------------------------------------------------------------------
# Structural steps
# -----------------------------------------------------------------------------


def _pick(source: Any, names: Iterable[str]) -> dict[str, Any]:
    return {name: getattr(source, name) for name in names if name not in _DOCUMENT_KEYS}


def convert_singleton_to_multi_file(singleton: SingletonManifest) -> ManifestSet:
    """Split a legacy singleton into version, installer and default locale documents.

    The discriminators are never copied; each target keeps its own literal.
    """
    version = VersionManifest(
        package_identifier=singleton.package_identifier,
        package_version=singleton.package_version,
        default_locale=singleton.package_locale,
        manifest_version=singleton.manifest_version,
    )
    installer = InstallerManifest(
        **_pick(singleton, (entry.name for entry in INSTALLER_ROOT_FIELDS)),
        manifest_version=singleton.manifest_version,
    )
    default_locale = DefaultLocaleManifest(
        **_pick(singleton, (entry.name for entry in DEFAULT_LOCALE_FIELDS)),
        manifest_version=singleton.manifest_version,
    )
    return ManifestSet(version=version, installer=installer, default_locale=default_locale)


def ensure_multi_file(manifest_set: ManifestSet) -> ManifestSet:
    if manifest_set.singleton is None:
        return manifest_set
    converted = convert_singleton_to_multi_file(manifest_set.singleton)
    return converted.evolve(locales=manifest_set.locales)


def _stamp(manifest_set: ManifestSet, update: dict[str, Any]) -> ManifestSet:
    def apply(document):
        return document.model_copy(update=update) if document is not None else None

    return ManifestSet(
        version=apply(manifest_set.version),
        installer=apply(manifest_set.installer),
        default_locale=apply(manifest_set.default_locale),
        locales=tuple(locale.model_copy(update=update) for locale in manifest_set.locales),
        singleton=apply(manifest_set.singleton),
    )


def stamp_identifiers(
    manifest_set: ManifestSet, package_identifier: str, package_version: str | None = None
) -> ManifestSet:
    """Write the canonical identifier (and optionally a new version) on every document."""
    update: dict[str, Any] = {"package_identifier": package_identifier}
    if package_version:
        update["package_version"] = package_version
    return _stamp(manifest_set, update)


def ensure_manifest_version_consistency(
    manifest_set: ManifestSet, manifest_version: str = CURRENT_MANIFEST_VERSION
) -> ManifestSet:
    return _stamp(manifest_set, {"manifest_version": manifest_version})


def verify_installer_hash_changed(
    old_installers: Sequence[Installer], new_installers: Sequence[Installer]
) -> bool:
    """True when at least one new SHA-256 is absent from the old installers."""
    old = {(item.installer_sha256 or "").upper() for item in old_installers}
    new = {(item.installer_sha256 or "").upper() for item in new_installers}
    return bool(new - old)


def reset_version_specific_fields(manifest_set: ManifestSet) -> ManifestSet:
    """Clear release notes and release dates carried over from the previous version."""
    notes = {"release_notes": None, "release_notes_url": None}
    default_locale = manifest_set.default_locale
    installer = manifest_set.installer
    if default_locale is not None:
        default_locale = default_locale.model_copy(update=notes)
    if installer is not None:
        installer = installer.model_copy(
            update={
                "release_date": None,
                "installers": [
                    entry.model_copy(update={"release_date": None})
                    for entry in installer.installers
                ],
            }
        )
    return manifest_set.evolve(
        default_locale=default_locale,
        installer=installer,
        locales=tuple(locale.model_copy(update=notes) for locale in manifest_set.locales),
    )


def uses_vanity_urls(
    old_installers: Sequence[Installer], new_installers: Sequence[Installer]
) -> bool:
    """True when every new installer URL already appeared in the previous manifest."""
    previous = {item.installer_url for item in old_installers}
    return bool(new_installers) and all(item.installer_url in previous for item in new_installers)


def prepare_for_output(manifest_set: ManifestSet, *, promote: bool = True) -> ManifestSet:
    """Deduplicate installer fields, prune empty values and stamp the schema version."""
    installer = manifest_set.installer
    if installer is not None and promote:
        installer = shift_installer_fields_to_root_level(installer)
    pruned = ManifestSet(
        version=remove_empty_fields(manifest_set.version) if manifest_set.version else None,
        installer=remove_empty_fields(installer) if installer else None,
        default_locale=(
            remove_empty_fields(manifest_set.default_locale)
            if manifest_set.default_locale
            else None
        ),
        locales=tuple(remove_empty_fields(locale) for locale in manifest_set.locales),
    )
    return ensure_manifest_version_consistency(pruned)


# -----------------------------------------------------------------------------
# Installer URL arguments
# -----------------------------------------------------------------------------


def _as_enum(enum_type, value: str):
    try:
        return enum_type(value)
    except ValueError:
        return None


def parse_installer_url_argument(value: str) -> InstallerUrlArgument:
    """Parse ``url[|architecture][|scope][|displayVersion]`` in any modifier order."""
    segments = value.strip().split("|")
    if len(segments) > MAX_URL_ARGUMENT_SEGMENTS:
        raise InstallerArgumentError(
            f"Too many '|' arguments in {value!r}; at most {MAX_URL_ARGUMENT_SEGMENTS - 1} are allowed"
        )
    url = segments[0].strip()
    if not url:
        raise InstallerArgumentError(f"Missing installer URL in {value!r}")
    architecture: Architecture | None = None
    scope: Scope | None = None
    display_version: str | None = None
    for segment in segments[1:]:
        segment = segment.strip()
        parsed_architecture = _as_enum(Architecture, segment)
        parsed_scope = _as_enum(Scope, segment)
        if parsed_architecture is not None:
            if architecture is not None:
                raise InstallerArgumentError(f"Multiple architecture overrides in {value!r}")
            architecture = parsed_architecture
        elif parsed_scope is not None:
            if scope is not None:
                raise InstallerArgumentError(f"Multiple scope overrides in {value!r}")
            scope = parsed_scope
        elif segment and display_version is None:
            display_version = segment
        else:
            raise InstallerArgumentError(f"Unable to parse argument {segment!r} of {value!r}")
    return InstallerUrlArgument(url, architecture, scope, display_version)


def parse_installer_url_arguments(
    values: Sequence[str], display_version: str | None = None
) -> list[InstallerUrlArgument]:
    arguments = [parse_installer_url_argument(value) for value in values]
    if display_version:
        arguments = [
            argument
            if argument.display_version
            else InstallerUrlArgument(
                argument.url, argument.architecture, argument.scope, display_version
            )
            for argument in arguments
        ]
    for argument in arguments:
        if argument.architecture is not None:
            logger.warning(
                "Overriding architecture of %s with %s", argument.url, argument.architecture.value
            )
        if argument.scope is not None:
            logger.warning("Overriding scope of %s with %s", argument.url, argument.scope.value)
    return arguments


def package_metadata_seeds(detections: Iterable[DetectedInstaller]) -> dict[str, str]:
    """First non-empty package name, publisher, version and description read from the installers."""
    seeds: dict[str, str] = {}
    for detected in detections:
        for name in ("package_name", "publisher", "package_version", "short_description"):
            value = getattr(detected, name)
            if value and name not in seeds:
                seeds[name] = value
    return seeds


def derive_package_identifier(publisher: str, package_name: str) -> str:
    """Build ``<Publisher>.<PackageName>`` without whitespace or trademark marks."""
    parts = [re.sub(r"[\s©®]", "", value).strip(".") for value in (publisher, package_name)]
    return ".".join(part for part in parts if part)


# -----------------------------------------------------------------------------
# Warnings
# -----------------------------------------------------------------------------


def architecture_warnings(metadata: Sequence[InstallerMetadata]) -> list[str]:
    messages: list[str] = []
    reported: set[str] = set()
    for item in metadata:
        if item.has_mismatch and item.url not in reported:
            reported.add(item.url)
            messages.append(
                f"Architecture detected from URL ({item.url_architecture.value}) differs from "
                f"the binary architecture ({item.binary_architecture.value}) for {item.url}"
            )
        if len(item.nested_architectures) > 1 and f"nested:{item.url}" not in reported:
            reported.add(f"nested:{item.url}")
            names = ", ".join(sorted(arch.value for arch in item.nested_architectures))
            messages.append(f"{item.url} contains installers for several architectures: {names}")
    return messages


def display_version_warnings(
    old_installers: Sequence[Installer], arguments: Sequence[InstallerUrlArgument]
) -> list[str]:
    entries = [
        entry
        for installer in old_installers
        for entry in installer.apps_and_features_entries or []
        if entry.display_version is not None
    ]
    messages: list[str] = []
    supplied = sum(1 for argument in arguments if argument.display_version)
    if supplied < len(entries):
        messages.append(
            "Fewer display versions were supplied than the previous manifest carried; "
            "the remaining DisplayVersion values are unchanged"
        )
    versions = [entry.display_version for entry in entries]
    if len(set(versions)) != len(versions):
        messages.append(
            "An installer carries several DisplayVersion values; review AppsAndFeaturesEntries manually"
        )
    return messages


def describe_match_failure(result: MatchResult) -> list[str]:
    """Render one message per problem so the caller can name each installer."""
    if result.discrepancy:
        return [
            "The number of installer URLs does not match the number of distinct URLs "
            "in the existing manifest"
        ]
    messages = []
    for installer in result.unmatched:
        messages.append(
            f"No existing installer matches {installer.installer_url} "
            f"({_label(installer.architecture)}, {_label(installer.installer_type)})"
        )
    for installer in result.multiple_matched:
        messages.append(
            f"Several existing installers match {installer.installer_url} "
            f"({_label(installer.architecture)}, {_label(installer.installer_type)}); "
            "add an architecture or scope override"
        )
    for installer in result.unclaimed:
        messages.append(
            f"Existing installer {installer.installer_url} "
            f"({_label(installer.architecture)}) was not updated"
        )
    return messages


def _label(value: Any) -> str:
    return getattr(value, "value", None) or "unknown"


# -----------------------------------------------------------------------------
# Pipelines
# -----------------------------------------------------------------------------


@dataclass
class UpdateOutcome:
    manifests: ManifestSet
    match: MatchResult
    previous_installers: list[Installer] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.match.success

    @property
    def hash_changed(self) -> bool:
        installer = self.manifests.installer
        return verify_installer_hash_changed(
            self.previous_installers, installer.installers if installer else []
        )


class ManifestMergeEngine:
    """Orchestrates downloads, sniffing, matching and reconciliation."""

    def __init__(self, downloader: Downloader, sniffer: Sniffer) -> None:
        self.downloader = downloader
        self.sniffer = sniffer

    def download_all(self, arguments: Sequence[InstallerUrlArgument]) -> dict[str, Path]:
        files: dict[str, Path] = {}
        for argument in arguments:
            if argument.url not in files:
                files[argument.url] = self.downloader.download(argument.url)
        return files

    def _warn(self, messages: Iterable[str]) -> None:
        for message in messages:
            logger.warning("%s", message)

    def create_new(self, arguments: Sequence[InstallerUrlArgument]) -> ManifestSet:
        """Build a skeleton set from installer URLs for a package not yet published."""
        files = self.download_all(arguments)
        candidates, metadata = detect_installers(arguments, files, self.sniffer)
        self._warn(architecture_warnings(metadata))
        installer = InstallerManifest(
            installers=[candidate.installer for candidate in candidates]
        )
        if len(installer.installers) > 1:
            installer = shift_installer_fields_to_root_level(installer)
        seeds = package_metadata_seeds(candidate.detected for candidate in candidates)
        return ManifestSet(
            version=VersionManifest(
                default_locale=DEFAULT_LOCALE, package_version=seeds.pop("package_version", None)
            ),
            installer=installer,
            default_locale=DefaultLocaleManifest(package_locale=DEFAULT_LOCALE, **seeds),
        )

    def update(
        self,
        existing: ManifestSet,
        arguments: Sequence[InstallerUrlArgument],
        *,
        package_identifier: str,
        package_version: str,
        release_notes_url: str | None = None,
        release_date: date | None = None,
    ) -> UpdateOutcome:
        manifests = ensure_multi_file(existing)
        manifests = stamp_identifiers(manifests, package_identifier, package_version)
        manifests = reset_version_specific_fields(manifests)
        installer = manifests.installer
        if installer is None:
            installer = InstallerManifest(
                package_identifier=package_identifier, package_version=package_version
            )
        previous = list(installer.installers)

        if not arguments:
            seen: dict[str, None] = dict.fromkeys(
                item.installer_url for item in previous if item.installer_url
            )
            arguments = [InstallerUrlArgument(url) for url in seen]
        self._warn(display_version_warnings(previous, arguments))

        expanded = shift_root_fields_to_installer_level(installer)
        existing_urls = {item.installer_url for item in previous}
        new_urls = {argument.url for argument in arguments}
        files = self.download_all(arguments) if len(existing_urls) == len(new_urls) else {}
        result = match_installers(
            expanded.installers,
            arguments,
            files,
            self.sniffer,
            root_installer_type=installer.installer_type,
            root_scope=installer.scope,
        )
        self._warn(architecture_warnings(result.detected_architectures))
        if not result.success:
            return UpdateOutcome(manifests, result, previous)

        updated = expanded.model_copy(update={"installers": result.installers})
        if release_date is not None:
            updated = updated.model_copy(update={"release_date": release_date})
        default_locale = manifests.default_locale
        if release_notes_url and default_locale is not None:
            default_locale = default_locale.model_copy(
                update={"release_notes_url": release_notes_url}
            )
        manifests = manifests.evolve(installer=updated, default_locale=default_locale)
        return UpdateOutcome(prepare_for_output(manifests), result, previous)
