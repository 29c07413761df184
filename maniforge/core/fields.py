"""Static field descriptor tables for every manifest kind.

The reconciler, the locale editor, the prompt surface and the schema
generator consult these tables instead of introspecting models at runtime.
``maniforge/tests/test_fields.py`` keeps them in step with ``models``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

FieldKind = Literal["scalar", "list", "enum", "object"]


@dataclass(frozen=True)
class FieldSpec:
    name: str
    shared_with_installer: bool = False
    required: bool = False
    kind: FieldKind = "scalar"


def _shared(name: str, kind: FieldKind = "scalar") -> FieldSpec:
    return FieldSpec(name, shared_with_installer=True, kind=kind)


INSTALLER_OPTION_FIELDS: tuple[FieldSpec, ...] = (
    _shared("installer_locale"),
    _shared("platform", "list"),
    _shared("minimum_os_version"),
    _shared("installer_type", "enum"),
    _shared("nested_installer_type", "enum"),
    _shared("nested_installer_files", "list"),
    _shared("scope", "enum"),
    _shared("install_modes", "list"),
    _shared("installer_switches", "object"),
    _shared("installer_success_codes", "list"),
    _shared("expected_return_codes", "list"),
    _shared("upgrade_behavior", "enum"),
    _shared("commands", "list"),
    _shared("protocols", "list"),
    _shared("file_extensions", "list"),
    _shared("dependencies", "object"),
    _shared("package_family_name"),
    _shared("product_code"),
    _shared("capabilities", "list"),
    _shared("restricted_capabilities", "list"),
    _shared("markets", "object"),
    _shared("installer_aborts_terminal"),
    _shared("release_date"),
    _shared("install_location_required"),
    _shared("require_explicit_upgrade"),
    _shared("display_install_warnings"),
    _shared("unsupported_os_architectures", "list"),
    _shared("unsupported_arguments", "list"),
    _shared("apps_and_features_entries", "list"),
    _shared("elevation_requirement", "enum"),
    _shared("installation_metadata", "object"),
    _shared("download_command_prohibited"),
    _shared("repair_behavior", "enum"),
    _shared("archive_binaries_depend_on_path"),
    _shared("channel"),
)

INSTALLER_ENTRY_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("architecture", required=True, kind="enum"),
    FieldSpec("installer_url", required=True),
    FieldSpec("installer_sha256", required=True),
    FieldSpec("signature_sha256"),
) + INSTALLER_OPTION_FIELDS

_PACKAGE_KEY_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("package_identifier", required=True),
    FieldSpec("package_version", required=True),
)

_DOCUMENT_TAIL: tuple[FieldSpec, ...] = (
    FieldSpec("manifest_type", required=True, kind="enum"),
    FieldSpec("manifest_version", required=True),
)

VERSION_FIELDS: tuple[FieldSpec, ...] = (
    _PACKAGE_KEY_FIELDS + (FieldSpec("default_locale", required=True),) + _DOCUMENT_TAIL
)

INSTALLER_ROOT_FIELDS: tuple[FieldSpec, ...] = (
    _PACKAGE_KEY_FIELDS
    + INSTALLER_OPTION_FIELDS
    + (FieldSpec("installers", required=True, kind="list"),)
    + _DOCUMENT_TAIL
)


def _locale_fields(*, default: bool) -> tuple[FieldSpec, ...]:
    return (
        _PACKAGE_KEY_FIELDS
        + (
            FieldSpec("package_locale", required=True),
            FieldSpec("publisher", required=default),
            FieldSpec("publisher_url"),
            FieldSpec("publisher_support_url"),
            FieldSpec("privacy_url"),
            FieldSpec("author"),
            FieldSpec("package_name", required=default),
            FieldSpec("package_url"),
            FieldSpec("license", required=default),
            FieldSpec("license_url"),
            FieldSpec("copyright"),
            FieldSpec("copyright_url"),
            FieldSpec("short_description", required=default),
            FieldSpec("description"),
            FieldSpec("tags", kind="list"),
            FieldSpec("agreements", kind="list"),
            FieldSpec("release_notes"),
            FieldSpec("release_notes_url"),
            FieldSpec("purchase_url"),
            FieldSpec("installation_notes"),
            FieldSpec("documentations", kind="list"),
            FieldSpec("icons", kind="list"),
        )
        + ((FieldSpec("moniker"),) if default else ())
        + _DOCUMENT_TAIL
    )


DEFAULT_LOCALE_FIELDS = _locale_fields(default=True)
LOCALE_FIELDS = _locale_fields(default=False)

SINGLETON_FIELDS: tuple[FieldSpec, ...] = (
    DEFAULT_LOCALE_FIELDS[:-2]
    + INSTALLER_OPTION_FIELDS
    + (FieldSpec("installers", required=True, kind="list"),)
    + _DOCUMENT_TAIL
)

FIELD_TABLES: dict[str, tuple[FieldSpec, ...]] = {
    "version": VERSION_FIELDS,
    "installer": INSTALLER_ROOT_FIELDS,
    "installerEntry": INSTALLER_ENTRY_FIELDS,
    "defaultLocale": DEFAULT_LOCALE_FIELDS,
    "locale": LOCALE_FIELDS,
    "singleton": SINGLETON_FIELDS,
}

# Locale fields always prompted when authoring a locale.
PROMPTED_LOCALE_FIELDS: tuple[str, ...] = (
    "package_locale",
    "package_name",
    "publisher",
    "license",
    "short_description",
)

# Locale fields that name the document rather than describe the package.
_LOCALE_KEY_FIELDS = frozenset(
    {"package_identifier", "package_version", "manifest_type", "manifest_version"}
)


def shared_installer_fields() -> tuple[str, ...]:
    """Names present both at installer manifest root and on each installer."""
    return tuple(entry.name for entry in INSTALLER_ROOT_FIELDS if entry.shared_with_installer)


def required_fields(kind: str) -> tuple[str, ...]:
    return tuple(entry.name for entry in FIELD_TABLES[kind] if entry.required)


def locale_prompt_fields() -> tuple[str, ...]:
    return PROMPTED_LOCALE_FIELDS


def optional_locale_fields(prompted: Iterable[str] = PROMPTED_LOCALE_FIELDS) -> tuple[str, ...]:
    """Every non-required, non-key locale field not already prompted."""
    skip = set(prompted) | _LOCALE_KEY_FIELDS
    return tuple(
        entry.name
        for entry in LOCALE_FIELDS
        if not entry.required and entry.name not in skip
    )


def reference_locale_fields() -> tuple[str, ...]:
    """Fields a new locale may inherit from a reference locale."""
    return tuple(
        entry.name
        for entry in LOCALE_FIELDS
        if entry.name not in _LOCALE_KEY_FIELDS and entry.name != "package_locale"
    )


def field_spec(kind: str, name: str) -> FieldSpec:
    for entry in FIELD_TABLES[kind]:
        if entry.name == name:
            return entry
    raise KeyError(f"{kind} has no field {name}")
