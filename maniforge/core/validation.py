"""Schema and cross-document validation of a manifest directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from .errors import LocaleError, ManifestFormatError
from .locales import normalize_locale_tag
from .models import (
    DefaultLocaleManifest,
    InstallerManifest,
    LocaleManifest,
    Manifest,
    SingletonManifest,
    VersionManifest,
)
from .schemas import build_schema
from .serialization import deserialize, manifest_files, to_payload

logger = logging.getLogger("maniforge.validation")


class ManifestValidator:
    """Validate manifest files against generated JSON Schemas and each other."""

    def __init__(self) -> None:
        self._validators: dict[str, Draft202012Validator] = {}

    def _validator(self, kind: str) -> Draft202012Validator:
        if kind not in self._validators:
            self._validators[kind] = Draft202012Validator(build_schema(kind))
        return self._validators[kind]

    def _iter_error_messages(self, kind: str, payload: dict[str, Any]) -> Iterable[str]:
        for error in self._validator(kind).iter_errors(payload):
            path = ".".join(str(idx) for idx in error.path) or kind
            if isinstance(error, ValidationError):
                yield f"{path}: {error.message}"
            else:
                yield f"{path}: {error}"

    def validate_document(self, document: Manifest) -> list[str]:
        return list(self._iter_error_messages(document.manifest_type, to_payload(document)))

    def validate_directory(self, path: Path) -> tuple[bool, list[str]]:
        path = Path(path)
        if not path.is_dir():
            return False, [f"{path}: manifest directory not found"]
        files = manifest_files(path)
        if not files:
            return False, [f"{path}: no manifest files found"]

        messages: list[str] = []
        documents: list[tuple[str, Manifest]] = []
        for file in files:
            try:
                parsed = deserialize(file.read_text(encoding="utf-8-sig"))
            except ManifestFormatError as exc:
                messages.append(f"{file.name}: {exc}")
                continue
            for document in parsed:
                documents.append((file.name, document))
                messages.extend(
                    f"{file.name}: {message}" for message in self.validate_document(document)
                )

        messages.extend(self._check_consistency(documents))
        for message in messages:
            logger.debug("%s", message)
        return not messages, messages

    def _check_consistency(self, documents: list[tuple[str, Manifest]]) -> list[str]:
        messages: list[str] = []
        if not documents:
            return messages
        by_kind: dict[type, list[tuple[str, Manifest]]] = {}
        for name, document in documents:
            by_kind.setdefault(type(document), []).append((name, document))

        singletons = by_kind.get(SingletonManifest, [])
        if singletons:
            if len(documents) > 1:
                messages.append(
                    f"{singletons[0][0]}: a singleton manifest must be the only document"
                )
        else:
            for kind, label in (
                (VersionManifest, "version"),
                (InstallerManifest, "installer"),
                (DefaultLocaleManifest, "defaultLocale"),
            ):
                count = len(by_kind.get(kind, []))
                if count != 1:
                    messages.append(f"expected exactly one {label} manifest, found {count}")

        first_name, first = documents[0]
        for name, document in documents[1:]:
            for attribute, label in (
                ("package_identifier", "PackageIdentifier"),
                ("package_version", "PackageVersion"),
                ("manifest_version", "ManifestVersion"),
            ):
                if getattr(document, attribute) != getattr(first, attribute):
                    messages.append(
                        f"{name}: {label}: {getattr(document, attribute)!r} does not match "
                        f"{getattr(first, attribute)!r} in {first_name}"
                    )

        versions = by_kind.get(VersionManifest, [])
        defaults = by_kind.get(DefaultLocaleManifest, [])
        if len(versions) == 1 and len(defaults) == 1:
            name, version = versions[0]
            default_locale = defaults[0][1]
            if version.default_locale != default_locale.package_locale:  # type: ignore[union-attr]
                messages.append(
                    f"{name}: DefaultLocale: {version.default_locale!r} has no matching "  # type: ignore[union-attr]
                    "defaultLocale manifest"
                )

        locale_tags: dict[str, str] = {}
        for name, document in by_kind.get(DefaultLocaleManifest, []) + by_kind.get(
            LocaleManifest, []
        ):
            tag = _locale_key(document.package_locale)  # type: ignore[union-attr]
            if tag in locale_tags:
                messages.append(f"{name}: PackageLocale: duplicates {locale_tags[tag]}")
            locale_tags[tag] = name

        for name, document in by_kind.get(InstallerManifest, []) + singletons:
            messages.extend(self._check_installers(name, document))  # type: ignore[arg-type]
        return messages

    def _check_installers(
        self, name: str, manifest: InstallerManifest | SingletonManifest
    ) -> list[str]:
        messages: list[str] = []
        if not manifest.installers:
            messages.append(f"{name}: Installers: at least one installer is required")
        for index, installer in enumerate(manifest.installers):
            prefix = f"{name}: Installers.{index}"
            if not installer.installer_url:
                messages.append(f"{prefix}: InstallerUrl is required")
            if not installer.installer_sha256:
                messages.append(f"{prefix}: InstallerSha256 is required")
            if installer.architecture is None:
                messages.append(f"{prefix}: Architecture is required")
            if (installer.installer_type or manifest.installer_type) is None:
                messages.append(f"{prefix}: InstallerType is required at root or installer level")
        return messages


def _locale_key(tag: str | None) -> str:
    """Normalized tag for duplicate detection; malformed tags compare case-insensitively."""
    try:
        return normalize_locale_tag(tag or "")
    except LocaleError:
        return (tag or "").lower()
