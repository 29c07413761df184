"""Add and edit locale documents against a reference locale."""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Iterable, Union

from .errors import LocaleError
from .fields import locale_prompt_fields
from .models import DefaultLocaleManifest, LocaleManifest, ManifestSet

logger = logging.getLogger("maniforge.locales")

LocaleDocument = Union[DefaultLocaleManifest, LocaleManifest]

_TAG_PATTERN = re.compile(
    r"^(?P<language>[A-Za-z]{2,3})"
    r"(?:[-_](?P<script>[A-Za-z]{4}))?"
    r"(?:[-_](?P<region>[A-Za-z]{2}|\d{3}))?$"
)


def _parse_tag(tag: str) -> tuple[str, str | None, str | None]:
    match = _TAG_PATTERN.match((tag or "").strip())
    if match is None:
        raise LocaleError(f"Invalid locale tag: {tag!r}")
    language = match.group("language").lower()
    script = match.group("script")
    region = match.group("region")
    return (
        language,
        script.title() if script else None,
        region.upper() if region else None,
    )


def normalize_locale_tag(tag: str) -> str:
    """Canonical BCP 47 spelling, e.g. ``EN_us`` -> ``en-US``."""
    return "-".join(part for part in _parse_tag(tag) if part)


def locales_match(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    try:
        return _parse_tag(left) == _parse_tag(right)
    except LocaleError:
        return False


def locale_documents(manifest_set: ManifestSet) -> list[LocaleDocument]:
    documents: list[LocaleDocument] = []
    if manifest_set.default_locale is not None:
        documents.append(manifest_set.default_locale)
    documents.extend(manifest_set.locales)
    return documents


def find_locale(manifest_set: ManifestSet, tag: str) -> LocaleDocument | None:
    for document in locale_documents(manifest_set):
        if locales_match(document.package_locale, tag):
            return document
    return None


def resolve_reference_locale(
    manifest_set: ManifestSet, tag: str | None = None
) -> LocaleDocument:
    """Return the locale named by ``tag``, or the default locale when omitted."""
    if tag:
        normalize_locale_tag(tag)
        found = find_locale(manifest_set, tag)
        if found is None:
            raise LocaleError(f"Reference locale {tag} was not found in the manifest")
        return found
    if manifest_set.default_locale is None:
        raise LocaleError("Manifest has no default locale to use as reference")
    return manifest_set.default_locale


def populate_from_reference(
    locale: LocaleManifest,
    reference: LocaleDocument,
    field_names: Iterable[str] | None = None,
) -> LocaleManifest:
    """Seed unset fields of ``locale`` from ``reference``; set fields are kept."""
    names = locale_prompt_fields() if field_names is None else tuple(field_names)
    update: dict[str, Any] = {}
    for name in names:
        if name == "package_locale":
            continue
        if getattr(locale, name, None) is not None:
            continue
        value = getattr(reference, name, None)
        if value is not None:
            update[name] = copy.deepcopy(value)
    return locale.model_copy(update=update) if update else locale


def new_locale(
    manifest_set: ManifestSet, tag: str, reference_tag: str | None = None
) -> LocaleManifest:
    """Start a locale document for ``tag`` seeded from the reference locale."""
    normalized = normalize_locale_tag(tag)
    if find_locale(manifest_set, normalized) is not None:
        raise LocaleError(f"Locale {normalized} already exists in the manifest")
    reference = resolve_reference_locale(manifest_set, reference_tag)
    locale = LocaleManifest(
        package_identifier=manifest_set.package_identifier,
        package_version=manifest_set.package_version,
        package_locale=normalized,
    )
    return populate_from_reference(locale, reference)


def add_locale(manifest_set: ManifestSet, locale: LocaleManifest) -> ManifestSet:
    """Append ``locale``; its tag must not match any existing locale document."""
    normalized = normalize_locale_tag(locale.package_locale or "")
    if find_locale(manifest_set, normalized) is not None:
        raise LocaleError(f"Locale {normalized} already exists in the manifest")
    stamped = locale.model_copy(
        update={
            "package_locale": normalized,
            "package_identifier": manifest_set.package_identifier,
            "package_version": manifest_set.package_version,
        }
    )
    logger.debug("Adding locale %s", normalized)
    return manifest_set.with_locale(stamped)


def update_locale(manifest_set: ManifestSet, tag: str, **changes: Any) -> ManifestSet:
    """Apply ``changes`` to the existing locale document matching ``tag``."""
    normalize_locale_tag(tag)
    target = find_locale(manifest_set, tag)
    if target is None:
        raise LocaleError(f"Locale {tag} does not exist in the manifest")
    changes.pop("package_locale", None)
    updated = target.model_copy(update=changes)
    if target is manifest_set.default_locale:
        return manifest_set.evolve(default_locale=updated)
    locales = tuple(updated if item is target else item for item in manifest_set.locales)
    return manifest_set.evolve(locales=locales)
