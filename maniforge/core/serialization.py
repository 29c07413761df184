"""YAML/JSON codec and on-disk layout for manifest documents."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Iterable

import yaml

from .errors import ManifestFormatError
from .models import Manifest, ManifestSet, parse_manifest

logger = logging.getLogger("maniforge.serialization")

SCHEMA_URL_TEMPLATE = "https://aka.ms/winget-manifest.{kind}.{version}.schema.json"
MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")
_BOM = "\ufeff"


class ManifestFormat(str, Enum):
    YAML = "yaml"
    JSON = "json"

    @property
    def extension(self) -> str:
        return f".{self.value}"


class ManifestLoader(yaml.SafeLoader):
    """Safe loader that keeps float-looking scalars (``1.10``) as strings."""


ManifestLoader.yaml_implicit_resolvers = {
    key: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:float"]
    for key, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class ManifestDumper(yaml.SafeDumper):
    """Safe dumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    if "\n" in value:
        return dumper.represent_scalar("tag:yaml.org,2002:str", value, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", value)


ManifestDumper.add_representer(str, _represent_str)


def _tool_version() -> str:
    from maniforge import __version__

    return __version__


def schema_url(document: Manifest) -> str:
    return SCHEMA_URL_TEMPLATE.format(
        kind=document.manifest_type, version=document.manifest_version
    )


def to_payload(document: Manifest) -> dict[str, Any]:
    return document.model_dump(mode="json", by_alias=True, exclude_none=True)


def serialize(document: Manifest, fmt: ManifestFormat = ManifestFormat.YAML) -> str:
    payload = to_payload(document)
    if fmt is ManifestFormat.JSON:
        document_json = {"$schema": schema_url(document), **payload}
        return json.dumps(document_json, indent=2, ensure_ascii=False) + "\n"
    header = (
        f"# Created with maniforge {_tool_version()}\n"
        f"# yaml-language-server: $schema={schema_url(document)}\n\n"
    )
    body = yaml.dump(
        payload,
        Dumper=ManifestDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=4096,
    )
    return header + body


def _load_payload(text: str) -> Any:
    stripped = text.lstrip(_BOM).strip()
    if not stripped:
        raise ManifestFormatError("Manifest content is empty")
    is_json = (stripped[0], stripped[-1]) in {("{", "}"), ("[", "]")}
    try:
        if is_json:
            return json.loads(stripped)
        return yaml.load(stripped, Loader=ManifestLoader)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ManifestFormatError(f"Unable to parse manifest content: {exc}") from exc


def deserialize(text: str) -> list[Manifest]:
    """Parse one document (or a JSON array of documents)."""
    payload = _load_payload(text)
    items = payload if isinstance(payload, list) else [payload]
    documents = []
    for item in items:
        if not isinstance(item, dict):
            raise ManifestFormatError("Manifest content must be a mapping")
        item = {key: value for key, value in item.items() if key != "$schema"}
        documents.append(parse_manifest(item))
    return documents


def load_manifest_set(texts: Iterable[str]) -> ManifestSet:
    documents: list[Manifest] = []
    for text in texts:
        documents.extend(deserialize(text))
    if not documents:
        raise ManifestFormatError("No manifest documents found")
    return ManifestSet.from_documents(documents)


def manifest_file_name(document: Manifest, fmt: ManifestFormat = ManifestFormat.YAML) -> str:
    identifier = document.package_identifier or "manifest"
    kind = document.manifest_type
    if kind == "installer":
        stem = f"{identifier}.installer"
    elif kind in {"defaultLocale", "locale"}:
        stem = f"{identifier}.locale.{document.package_locale}"  # type: ignore[union-attr]
    else:
        stem = identifier
    return stem + fmt.extension


def manifest_dir_path(package_identifier: str, package_version: str) -> PurePosixPath:
    """``manifests/<first letter>/<Id segments>/<Version>`` inside the repository."""
    segments = package_identifier.split(".")
    return PurePosixPath(
        "manifests", package_identifier[0].lower(), *segments, package_version
    )


def render_manifest_set(
    manifest_set: ManifestSet, fmt: ManifestFormat = ManifestFormat.YAML
) -> dict[str, str]:
    """Map file name to serialized text for every document in the set."""
    return {
        manifest_file_name(document, fmt): serialize(document, fmt)
        for document in manifest_set.documents()
    }


def write_manifest_set(
    manifest_set: ManifestSet,
    output_dir: Path,
    fmt: ManifestFormat = ManifestFormat.YAML,
) -> list[Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, text in render_manifest_set(manifest_set, fmt).items():
        path = output_dir / name
        path.write_text(text, encoding="utf-8")
        logger.debug("Wrote %s", path)
        written.append(path)
    return written


def manifest_files(directory: Path) -> list[Path]:
    return sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() in MANIFEST_SUFFIXES
    )


def read_manifest_directory(directory: Path) -> ManifestSet:
    if not directory.is_dir():
        raise ManifestFormatError(f"Manifest directory not found: {directory}")
    return load_manifest_set(
        path.read_text(encoding="utf-8-sig") for path in manifest_files(directory)
    )
