"""Installer metadata sniffing from downloaded package files."""

from __future__ import annotations

import hashlib
import logging
import re
import struct
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol
from xml.etree import ElementTree

from .errors import PackageParseError
from .models import Architecture, InstallerType
from .msi import MsiFormatError, read_msi

logger = logging.getLogger("maniforge.sniffer")

PE_MACHINE_TYPES: dict[int, Architecture] = {
    0x014C: Architecture.X86,
    0x8664: Architecture.X64,
    0xAA64: Architecture.ARM64,
    0x01C4: Architecture.ARM,
}

_OLE_SIGNATURE = bytes.fromhex("d0cf11e0a1b11ae1")
_ZIP_SIGNATURE = b"PK\x03\x04"

# Byte markers embedded by the common setup authoring tools.
_EXE_MARKERS: tuple[tuple[bytes, InstallerType], ...] = (
    (b"Inno Setup", InstallerType.INNO),
    (b"Nullsoft", InstallerType.NULLSOFT),
    (b"WixBundleManifest", InstallerType.BURN),
    (b"WiX Toolset", InstallerType.BURN),
    (b".wixburn", InstallerType.BURN),
)

_URL_ARCHITECTURE_PATTERNS: tuple[tuple[re.Pattern[str], Architecture], ...] = (
    (re.compile(r"x64|win64|_64", re.IGNORECASE), Architecture.X64),
    (re.compile(r"x86|win32|ia32|_86", re.IGNORECASE), Architecture.X86),
)
_ARM64_PATTERN = re.compile(r"arm64|aarch64", re.IGNORECASE)
_ARM_PATTERN = re.compile(r"\barm\b", re.IGNORECASE)

_APPX_NAMESPACE = "{http://schemas.microsoft.com/appx/manifest/foundation/windows10}"
_BUNDLE_NAMESPACE = "{http://schemas.microsoft.com/appx/2013/bundle}"

# Crockford base32 alphabet used for package family name publisher ids.
_PUBLISHER_ID_ALPHABET = "0123456789abcdefghjkmnpqrstvwxyz"


@dataclass(frozen=True)
class DetectedInstaller:
    """Metadata read from one installer (or one nested package) of a file."""

    installer_type: InstallerType
    sha256: str
    architecture: Architecture | None = None
    signature_sha256: str | None = None
    product_code: str | None = None
    package_family_name: str | None = None
    minimum_os_version: str | None = None
    platform: tuple[str, ...] | None = None
    installer_locale: str | None = None
    nested_architectures: frozenset[Architecture] = field(default_factory=frozenset)
    # Package metadata used to seed the default locale of a new package.
    package_name: str | None = None
    publisher: str | None = None
    package_version: str | None = None
    short_description: str | None = None


class Sniffer(Protocol):
    def sniff(self, path: Path, url: str) -> list[DetectedInstaller]:
        ...


def architecture_from_url(url: str) -> Architecture | None:
    """Guess the architecture named in a URL; ambiguous URLs yield ``None``."""
    matches: list[Architecture] = []
    # arm must only be checked when arm64 is absent, otherwise it matches both.
    if _ARM64_PATTERN.search(url):
        matches.append(Architecture.ARM64)
    elif _ARM_PATTERN.search(url):
        matches.append(Architecture.ARM)
    for pattern, architecture in _URL_ARCHITECTURE_PATTERNS:
        if pattern.search(url):
            matches.append(architecture)
    return matches[0] if len(matches) == 1 else None


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest().upper()


def pe_machine_architecture(header: bytes) -> Architecture | None:
    """Read the COFF machine field of a PE image."""
    if len(header) < 64 or header[:2] != b"MZ":
        return None
    (pe_offset,) = struct.unpack_from("<I", header, 60)
    if pe_offset + 6 > len(header) or header[pe_offset : pe_offset + 4] != b"PE\0\0":
        return None
    (machine,) = struct.unpack_from("<H", header, pe_offset + 4)
    return PE_MACHINE_TYPES.get(machine)


def package_family_name(name: str, publisher: str) -> str:
    """Compute ``<name>_<publisherId>`` as Windows does for MSIX packages."""
    digest = hashlib.sha256(publisher.encode("utf-16-le")).digest()[:8]
    bits = "".join(f"{byte:08b}" for byte in digest) + "0"
    publisher_id = "".join(
        _PUBLISHER_ID_ALPHABET[int(bits[index : index + 5], 2)]
        for index in range(0, 65, 5)
    )
    return f"{name}_{publisher_id}"


class PackageSniffer:
    """Detect installer type, architecture and identifiers from a file."""

    def __init__(self, scan_bytes: int = 8 * 1024 * 1024) -> None:
        self.scan_bytes = scan_bytes

    def sniff(self, path: Path, url: str) -> list[DetectedInstaller]:
        path = Path(path)
        sha256 = file_sha256(path)
        with path.open("rb") as handle:
            head = handle.read(self.scan_bytes)

        if head.startswith(_OLE_SIGNATURE):
            return [self._msi_installer(path, sha256, url)]
        if head.startswith(_ZIP_SIGNATURE) and zipfile.is_zipfile(path):
            return self._sniff_zip(path, sha256, url)
        if head.startswith(b"MZ"):
            architecture = pe_machine_architecture(head[:4096])
            installer_type = self._exe_type(head)
            logger.debug(
                "Detected %s installer (%s) at %s", installer_type.value, architecture, url
            )
            return [DetectedInstaller(installer_type, sha256, architecture=architecture)]
        raise PackageParseError([url])

    def _msi_installer(self, path: Path, sha256: str, url: str) -> DetectedInstaller:
        try:
            database = read_msi(path)
        except MsiFormatError as exc:
            logger.debug("Unreadable MSI at %s: %s", url, exc)
            raise PackageParseError([url]) from exc
        logger.debug("Detected MSI package (%s) at %s", database.architecture.value, url)
        return DetectedInstaller(
            InstallerType.MSI,
            sha256,
            architecture=database.architecture,
            product_code=database.get("ProductCode"),
            installer_locale=database.installer_locale,
            package_name=database.get("ProductName") or database.subject,
            publisher=database.get("Manufacturer") or database.author,
            package_version=database.get("ProductVersion"),
            short_description=database.get("ARPCOMMENTS") or database.comments,
        )

    def _exe_type(self, head: bytes) -> InstallerType:
        for marker, installer_type in _EXE_MARKERS:
            if marker in head:
                return installer_type
        return InstallerType.EXE

    def _sniff_zip(self, path: Path, sha256: str, url: str) -> list[DetectedInstaller]:
        with zipfile.ZipFile(path) as archive:
            names = set(archive.namelist())
            if "AppxManifest.xml" in names:
                signature = self._signature_sha256(archive, names)
                return [self._appx_installer(archive.read("AppxManifest.xml"), sha256, signature)]
            if "AppxMetadata/AppxBundleManifest.xml" in names:
                signature = self._signature_sha256(archive, names)
                return self._bundle_installers(
                    archive.read("AppxMetadata/AppxBundleManifest.xml"), sha256, signature
                )
            nested = {
                architecture
                for name in names
                if name.lower().endswith((".exe", ".msi", ".msix"))
                for architecture in [architecture_from_url(name)]
                if architecture is not None
            }
        logger.debug("Detected zip archive at %s (nested architectures: %s)", url, nested)
        if len(nested) > 1:
            return [
                DetectedInstaller(
                    InstallerType.ZIP,
                    sha256,
                    architecture=architecture,
                    nested_architectures=frozenset(nested),
                )
                for architecture in sorted(nested, key=lambda item: item.value)
            ]
        architecture = next(iter(nested), None)
        return [
            DetectedInstaller(
                InstallerType.ZIP,
                sha256,
                architecture=architecture,
                nested_architectures=frozenset(nested),
            )
        ]

    def _signature_sha256(self, archive: zipfile.ZipFile, names: Iterable[str]) -> str | None:
        if "AppxSignature.p7x" not in names:
            return None
        return hashlib.sha256(archive.read("AppxSignature.p7x")).hexdigest().upper()

    def _appx_installer(
        self, manifest_xml: bytes, sha256: str, signature: str | None
    ) -> DetectedInstaller:
        root = ElementTree.fromstring(manifest_xml)
        identity = root.find(f"{_APPX_NAMESPACE}Identity")
        if identity is None:
            identity = root.find(".//{*}Identity")
        architecture = None
        family_name = None
        version = None
        if identity is not None:
            arch_text = identity.get("ProcessorArchitecture")
            architecture = _parse_architecture(arch_text)
            name, publisher = identity.get("Name"), identity.get("Publisher")
            if name and publisher:
                family_name = package_family_name(name, publisher)
            version = identity.get("Version")
        properties = {
            element.tag.rsplit("}", 1)[-1]: _display_text(element.text)
            for element in root.findall("./{*}Properties/*")
        }
        description = properties.get("Description")
        if description is None:
            visual = root.find(".//{*}VisualElements")
            description = _display_text(visual.get("Description")) if visual is not None else None
        minimum_os = None
        platforms: list[str] = []
        for target in root.iter():
            if target.tag.endswith("TargetDeviceFamily"):
                platforms.append(target.get("Name", ""))
                minimum_os = minimum_os or target.get("MinVersion")
        return DetectedInstaller(
            InstallerType.MSIX,
            sha256,
            architecture=architecture,
            signature_sha256=signature,
            package_family_name=family_name,
            minimum_os_version=minimum_os,
            platform=tuple(name for name in platforms if name) or None,
            package_name=properties.get("DisplayName"),
            publisher=properties.get("PublisherDisplayName"),
            package_version=version,
            short_description=description,
        )

    def _bundle_installers(
        self, bundle_xml: bytes, sha256: str, signature: str | None
    ) -> list[DetectedInstaller]:
        root = ElementTree.fromstring(bundle_xml)
        identity = root.find(f"{_BUNDLE_NAMESPACE}Identity")
        family_name = None
        if identity is not None and identity.get("Name") and identity.get("Publisher"):
            family_name = package_family_name(identity.get("Name", ""), identity.get("Publisher", ""))
        architectures = []
        for package in root.iter(f"{_BUNDLE_NAMESPACE}Package"):
            if package.get("Type", "application").lower() != "application":
                continue
            architecture = _parse_architecture(package.get("Architecture"))
            if architecture is not None and architecture not in architectures:
                architectures.append(architecture)
        nested = frozenset(architectures)
        return [
            DetectedInstaller(
                InstallerType.MSIX,
                sha256,
                architecture=architecture,
                signature_sha256=signature,
                package_family_name=family_name,
                nested_architectures=nested,
                package_version=identity.get("Version") if identity is not None else None,
            )
            for architecture in architectures or [None]
        ]


def _display_text(value: str | None) -> str | None:
    """Literal display text; ``ms-resource:`` references cannot be resolved here."""
    if not value or not value.strip() or value.startswith("ms-resource:"):
        return None
    return value.strip()


def _parse_architecture(value: str | None) -> Architecture | None:
    if not value:
        return None
    try:
        return Architecture(value)
    except ValueError:
        return None

