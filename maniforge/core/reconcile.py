"""Move shared fields between the installer manifest root and its installers."""

from __future__ import annotations

import copy
from typing import Any, TypeVar

from .fields import shared_installer_fields
from .models import Installer, InstallerManifest, ManifestModel

M = TypeVar("M", bound=ManifestModel)


def _fill_unset(installer: Installer, root_values: dict[str, Any]) -> Installer:
    update = {
        name: copy.deepcopy(value)
        for name, value in root_values.items()
        if getattr(installer, name) is None
    }
    return installer.model_copy(update=update) if update else installer


def shift_root_fields_to_installer_level(manifest: InstallerManifest) -> InstallerManifest:
    """Push every non-null root value down to installers that leave it unset.

    Installer-level values always win; the root copy is cleared afterwards.
    """
    root_values = {
        name: getattr(manifest, name)
        for name in shared_installer_fields()
        if getattr(manifest, name) is not None
    }
    if not root_values:
        return manifest
    installers = [_fill_unset(installer, root_values) for installer in manifest.installers]
    update: dict[str, Any] = {name: None for name in root_values}
    update["installers"] = installers
    return manifest.model_copy(update=update)


def shift_installer_fields_to_root_level(manifest: InstallerManifest) -> InstallerManifest:
    """Promote values every installer shares to the root and clear them below."""
    installers = manifest.installers
    if not installers:
        return manifest

    promoted: dict[str, Any] = {}
    for name in shared_installer_fields():
        values = [getattr(installer, name) for installer in installers]
        first = values[0]
        if first is None:
            continue
        # list == list compares element by element in order
        if all(value is not None and value == first for value in values[1:]):
            promoted[name] = copy.deepcopy(first)

    if not promoted:
        return manifest
    cleared = {name: None for name in promoted}
    update: dict[str, Any] = dict(promoted)
    update["installers"] = [installer.model_copy(update=cleared) for installer in installers]
    return manifest.model_copy(update=update)


def _is_empty(model: ManifestModel) -> bool:
    values = [getattr(model, name) for name in type(model).model_fields]
    values.extend((model.model_extra or {}).values())
    return all(value is None for value in values)


def _prune(value: Any) -> Any:
    if isinstance(value, ManifestModel):
        pruned = remove_empty_fields(value)
        return None if _is_empty(pruned) else pruned
    if isinstance(value, str):
        return None if value == "" else value
    if isinstance(value, list):
        items = [_prune(item) for item in value]
        items = [item for item in items if item is not None]
        if not items:
            return None
        if len(items) == len(value) and all(a is b for a, b in zip(items, value)):
            return value
        return items
    return value


def remove_empty_fields(model: M) -> M:
    """Null out empty strings and empty lists, recursively.

    Only optional fields (default ``None``) are pruned, so required
    collections such as ``Installers`` keep their type.
    """
    update: dict[str, Any] = {}
    for name, info in type(model).model_fields.items():
        if info.default is not None:
            continue
        value = getattr(model, name)
        pruned = _prune(value)
        if pruned is not value:
            update[name] = pruned
    if isinstance(model, InstallerManifest):
        installers = [remove_empty_fields(installer) for installer in model.installers]
        if any(a is not b for a, b in zip(installers, model.installers)):
            update["installers"] = installers
    return model.model_copy(update=update) if update else model
