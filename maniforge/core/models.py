"""Typed manifest documents: version, installer, default locale, locale and singleton."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Iterator, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_pascal

from .errors import ManifestFormatError

CURRENT_MANIFEST_VERSION = "1.10.0"


class _ManifestEnum(str, Enum):
    """String enum whose members parse case-insensitively."""

    @classmethod
    def _missing_(cls, value: object) -> "_ManifestEnum | None":
        if isinstance(value, str):
            folded = value.casefold()
            for member in cls:
                if member.value.casefold() == folded:
                    return member
        return None

    def __str__(self) -> str:
        return self.value


class Architecture(_ManifestEnum):
    X86 = "x86"
    X64 = "x64"
    ARM = "arm"
    ARM64 = "arm64"
    NEUTRAL = "neutral"


class InstallerType(_ManifestEnum):
    MSIX = "msix"
    MSI = "msi"
    APPX = "appx"
    EXE = "exe"
    ZIP = "zip"
    INNO = "inno"
    NULLSOFT = "nullsoft"
    WIX = "wix"
    BURN = "burn"
    PWA = "pwa"
    PORTABLE = "portable"
    FONT = "font"


class Scope(_ManifestEnum):
    USER = "user"
    MACHINE = "machine"


class UpgradeBehavior(_ManifestEnum):
    INSTALL = "install"
    UNINSTALL_PREVIOUS = "uninstallPrevious"
    DENY = "deny"


class ElevationRequirement(_ManifestEnum):
    ELEVATION_REQUIRED = "elevationRequired"
    ELEVATION_PROHIBITED = "elevationProhibited"
    ELEVATES_SELF = "elevatesSelf"


class RepairBehavior(_ManifestEnum):
    MODIFY = "modify"
    UNINSTALLER = "uninstaller"
    INSTALLER = "installer"


class ManifestModel(BaseModel):
    """Immutable base: snake_case attributes, PascalCase keys, unknown keys kept."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        alias_generator=to_pascal,
        coerce_numbers_to_str=True,
    )


# Nested value objects


class InstallerSwitches(ManifestModel):
    silent: str | None = None
    silent_with_progress: str | None = None
    interactive: str | None = None
    install_location: str | None = None
    log: str | None = None
    upgrade: str | None = None
    custom: str | None = None
    repair: str | None = None


class ExpectedReturnCode(ManifestModel):
    installer_return_code: int | None = None
    return_response: str | None = None
    return_response_url: str | None = None


class PackageDependency(ManifestModel):
    package_identifier: str | None = None
    minimum_version: str | None = None


class Dependencies(ManifestModel):
    windows_features: List[str] | None = None
    windows_libraries: List[str] | None = None
    package_dependencies: List[PackageDependency] | None = None
    external_dependencies: List[str] | None = None


class AppsAndFeaturesEntry(ManifestModel):
    display_name: str | None = None
    publisher: str | None = None
    display_version: str | None = None
    product_code: str | None = None
    upgrade_code: str | None = None
    installer_type: InstallerType | None = None


class NestedInstallerFile(ManifestModel):
    relative_file_path: str | None = None
    portable_command_alias: str | None = None


class Markets(ManifestModel):
    allowed_markets: List[str] | None = None
    excluded_markets: List[str] | None = None


class InstallationFile(ManifestModel):
    relative_file_path: str | None = None
    file_sha256: str | None = None
    file_type: str | None = None
    invocation_parameter: str | None = None
    display_name: str | None = None


class InstallationMetadata(ManifestModel):
    default_install_location: str | None = None
    files: List[InstallationFile] | None = None


class Agreement(ManifestModel):
    agreement_label: str | None = None
    agreement_text: str | None = Field(None, alias="Agreement")
    agreement_url: str | None = None


class Documentation(ManifestModel):
    document_label: str | None = None
    document_url: str | None = None


class Icon(ManifestModel):
    icon_url: str | None = None
    icon_file_type: str | None = None
    icon_resolution: str | None = None
    icon_theme: str | None = None
    icon_sha256: str | None = None


# Field groups shared between document kinds


class _PackageKey(ManifestModel):
    package_identifier: str | None = None
    package_version: str | None = None


class _InstallerIdentity(ManifestModel):
    architecture: Architecture | None = None
    installer_url: str | None = None
    installer_sha256: str | None = None
    signature_sha256: str | None = None


class _InstallerOptions(ManifestModel):
    """Fields legal both at installer manifest root and on each installer."""

    installer_locale: str | None = None
    platform: List[str] | None = None
    minimum_os_version: str | None = Field(None, alias="MinimumOSVersion")
    installer_type: InstallerType | None = None
    nested_installer_type: InstallerType | None = None
    nested_installer_files: List[NestedInstallerFile] | None = None
    scope: Scope | None = None
    install_modes: List[str] | None = None
    installer_switches: InstallerSwitches | None = None
    installer_success_codes: List[int] | None = None
    expected_return_codes: List[ExpectedReturnCode] | None = None
    upgrade_behavior: UpgradeBehavior | None = None
    commands: List[str] | None = None
    protocols: List[str] | None = None
    file_extensions: List[str] | None = None
    dependencies: Dependencies | None = None
    package_family_name: str | None = None
    product_code: str | None = None
    capabilities: List[str] | None = None
    restricted_capabilities: List[str] | None = None
    markets: Markets | None = None
    installer_aborts_terminal: bool | None = None
    release_date: date | None = None
    install_location_required: bool | None = None
    require_explicit_upgrade: bool | None = None
    display_install_warnings: bool | None = None
    unsupported_os_architectures: List[Architecture] | None = Field(
        None, alias="UnsupportedOSArchitectures"
    )
    unsupported_arguments: List[str] | None = None
    apps_and_features_entries: List[AppsAndFeaturesEntry] | None = None
    elevation_requirement: ElevationRequirement | None = None
    installation_metadata: InstallationMetadata | None = None
    download_command_prohibited: bool | None = None
    repair_behavior: RepairBehavior | None = None
    archive_binaries_depend_on_path: bool | None = None
    channel: str | None = None


class _LocaleFields(_PackageKey):
    package_locale: str | None = None
    publisher: str | None = None
    publisher_url: str | None = None
    publisher_support_url: str | None = None
    privacy_url: str | None = None
    author: str | None = None
    package_name: str | None = None
    package_url: str | None = None
    license: str | None = None
    license_url: str | None = None
    copyright: str | None = None
    copyright_url: str | None = None
    short_description: str | None = None
    description: str | None = None
    tags: List[str] | None = None
    agreements: List[Agreement] | None = None
    release_notes: str | None = None
    release_notes_url: str | None = None
    purchase_url: str | None = None
    installation_notes: str | None = None
    documentations: List[Documentation] | None = None
    icons: List[Icon] | None = None


class Installer(_InstallerOptions, _InstallerIdentity):
    """One installer entry of an installer manifest."""

    @property
    def identity_key(self) -> tuple[str | None, InstallerType | None, Architecture | None]:
        return (self.installer_url, self.installer_type, self.architecture)


# Documents


class VersionManifest(_PackageKey):
    default_locale: str | None = None
    manifest_type: Literal["version"] = "version"
    manifest_version: str = CURRENT_MANIFEST_VERSION


class InstallerManifest(_InstallerOptions, _PackageKey):
    installers: List[Installer] = Field(default_factory=list)
    manifest_type: Literal["installer"] = "installer"
    manifest_version: str = CURRENT_MANIFEST_VERSION


class DefaultLocaleManifest(_LocaleFields):
    moniker: str | None = None
    manifest_type: Literal["defaultLocale"] = "defaultLocale"
    manifest_version: str = CURRENT_MANIFEST_VERSION

    def to_locale_manifest(self) -> "LocaleManifest":
        """Re-type this document as a plain locale (no moniker)."""
        data = self.model_dump(exclude={"moniker", "manifest_type"})
        return LocaleManifest.model_validate(data)


class LocaleManifest(_LocaleFields):
    manifest_type: Literal["locale"] = "locale"
    manifest_version: str = CURRENT_MANIFEST_VERSION


class SingletonManifest(_InstallerOptions, _LocaleFields):
    """Legacy single-file form carrying version, installer and locale fields."""

    moniker: str | None = None
    installers: List[Installer] = Field(default_factory=list)
    manifest_type: Literal["singleton"] = "singleton"
    manifest_version: str = CURRENT_MANIFEST_VERSION


Manifest = Union[
    VersionManifest,
    InstallerManifest,
    DefaultLocaleManifest,
    LocaleManifest,
    SingletonManifest,
]

MANIFEST_KINDS: dict[str, type[ManifestModel]] = {
    "version": VersionManifest,
    "installer": InstallerManifest,
    "defaultLocale": DefaultLocaleManifest,
    "locale": LocaleManifest,
    "singleton": SingletonManifest,
}


def parse_manifest(data: Mapping[str, Any]) -> Manifest:
    """Build the typed document named by the ``ManifestType`` discriminator."""
    if not isinstance(data, Mapping):
        raise ManifestFormatError("Manifest content must be a mapping")
    kind = data.get("ManifestType")
    model = MANIFEST_KINDS.get(kind) if isinstance(kind, str) else None
    if model is None:
        raise ManifestFormatError(f"Unknown manifest type: {kind!r}")
    try:
        return model.model_validate(dict(data))  # type: ignore[return-value]
    except ValidationError as exc:
        raise ManifestFormatError(f"Invalid {kind} manifest: {exc}") from exc


@dataclass(frozen=True)
class ManifestSet:
    """The documents describing one package version."""

    version: VersionManifest | None = None
    installer: InstallerManifest | None = None
    default_locale: DefaultLocaleManifest | None = None
    locales: tuple[LocaleManifest, ...] = field(default_factory=tuple)
    singleton: SingletonManifest | None = None

    @classmethod
    def from_documents(cls, documents: list[Manifest]) -> "ManifestSet":
        values: dict[str, Any] = {}
        locales: list[LocaleManifest] = []
        for document in documents:
            if isinstance(document, VersionManifest):
                values["version"] = document
            elif isinstance(document, InstallerManifest):
                values["installer"] = document
            elif isinstance(document, DefaultLocaleManifest):
                values["default_locale"] = document
            elif isinstance(document, LocaleManifest):
                locales.append(document)
            elif isinstance(document, SingletonManifest):
                values["singleton"] = document
        return cls(locales=tuple(locales), **values)

    @property
    def package_identifier(self) -> str | None:
        source = self.version or self.singleton
        return source.package_identifier if source else None

    @property
    def package_version(self) -> str | None:
        source = self.version or self.singleton
        return source.package_version if source else None

    def documents(self) -> Iterator[Manifest]:
        """Yield every present document in serialization order."""
        if self.singleton is not None:
            yield self.singleton
        for document in (self.version, self.installer, self.default_locale):
            if document is not None:
                yield document
        yield from self.locales

    def with_locale(self, locale: LocaleManifest) -> "ManifestSet":
        return replace(self, locales=self.locales + (locale,))

    def evolve(self, **changes: Any) -> "ManifestSet":
        return replace(self, **changes)
