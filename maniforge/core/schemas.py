"""Generate JSON Schemas for every manifest kind from the pydantic models."""

from __future__ import annotations

import json
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

from .fields import required_fields
from .models import MANIFEST_KINDS, Installer, ManifestModel


def _required_aliases(model: type[ManifestModel], kind: str) -> list[str]:
    fields = model.model_fields
    return [fields[name].alias or name for name in required_fields(kind)]


@lru_cache(maxsize=None)
def build_schema(kind: str) -> dict[str, Any]:
    """JSON Schema for ``kind`` with required keys taken from the field tables."""
    model = MANIFEST_KINDS[kind]
    schema = model.model_json_schema(by_alias=True)
    schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
    schema["required"] = _required_aliases(model, kind)
    installer_schema = schema.get("$defs", {}).get(Installer.__name__)
    if installer_schema is not None:
        installer_schema["required"] = _required_aliases(Installer, "installerEntry")
    if "Installers" in schema.get("properties", {}):
        schema["properties"]["Installers"]["minItems"] = 1
    return schema


def dump_schema(kind: str, directory: Path) -> Path:
    path = directory / f"{kind}.schema.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(build_schema(kind), indent=2) + "\n", encoding="utf-8")
    return path


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    directory = Path(args[0]) if args else Path("schemas")
    for kind in MANIFEST_KINDS:
        print(f"Generated {dump_schema(kind, directory)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
