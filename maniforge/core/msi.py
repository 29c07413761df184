"""Read the summary information and Property table of a Windows Installer database.

An MSI file is an OLE compound document. Table streams have their names
packed two characters per UTF-16 code unit and store string columns as
indices into a shared string pool, column by column.
"""

from __future__ import annotations

import codecs
import locale
import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path

import olefile

from .models import Architecture

logger = logging.getLogger("maniforge.msi")

# Characters allowed in packed stream names, in code order.
_NAME_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz._"
_PAIR_BASE = 0x3800
_SINGLE_BASE = 0x4800
_TABLE_PREFIX = 0x4840
_LONG_REFS_FLAG = 0x8000

TEMPLATE_ARCHITECTURES: dict[str, Architecture] = {
    "intel": Architecture.X86,
    "intel64": Architecture.X64,
    "x64": Architecture.X64,
    "amd64": Architecture.X64,
    "arm64": Architecture.ARM64,
    "arm": Architecture.ARM,
}


class MsiFormatError(ValueError):
    """The file is an OLE document but not a readable installer database."""


@dataclass(frozen=True)
class MsiDatabase:
    template: str = ""
    subject: str | None = None
    author: str | None = None
    comments: str | None = None
    properties: dict[str, str] = field(default_factory=dict)

    @property
    def architecture(self) -> Architecture:
        """Platform named first in the Template summary property; neutral otherwise."""
        platform = self.template.split(";", 1)[0].strip().lower()
        return TEMPLATE_ARCHITECTURES.get(platform, Architecture.NEUTRAL)

    @property
    def installer_locale(self) -> str | None:
        return lcid_to_locale(self.properties.get("ProductLanguage"))

    def get(self, name: str) -> str | None:
        return self.properties.get(name) or None


def decode_stream_name(name: str) -> str:
    """Unpack an MSI stream name; table streams come back prefixed with ``!``."""
    chars: list[str] = []
    for char in name:
        code = ord(char)
        if _PAIR_BASE <= code < _SINGLE_BASE:
            code -= _PAIR_BASE
            chars.append(_NAME_ALPHABET[code & 0x3F])
            chars.append(_NAME_ALPHABET[(code >> 6) & 0x3F])
        elif _SINGLE_BASE <= code < _TABLE_PREFIX:
            chars.append(_NAME_ALPHABET[code - _SINGLE_BASE])
        elif code == _TABLE_PREFIX:
            chars.append("!")
        else:
            chars.append(char)
    return "".join(chars)


def _encoding(codepage: int) -> str:
    if codepage in (0, 1252):
        return "cp1252"
    if codepage == 65001:
        return "utf-8"
    try:
        return codecs.lookup(f"cp{codepage}").name
    except LookupError:
        return "cp1252"


def parse_string_pool(pool: bytes, data: bytes) -> tuple[list[str], int]:
    """Return the string table (index 0 is empty) and the width of a string reference."""
    if len(pool) < 4:
        raise MsiFormatError("string pool is truncated")
    words = struct.unpack(f"<{len(pool) // 2}H", pool[: len(pool) // 2 * 2])
    codepage = words[0] | ((words[1] & ~_LONG_REFS_FLAG & 0xFFFF) << 16)
    ref_width = 3 if words[1] & _LONG_REFS_FLAG else 2
    encoding = _encoding(codepage)

    strings = [""]
    offset = 0
    index = 2
    while index + 1 < len(words):
        length, refs = words[index], words[index + 1]
        if length == 0 and refs == 0:
            strings.append("")
            index += 2
            continue
        if length == 0:
            # Strings over 64k: the next entry carries the low and high words.
            if index + 3 >= len(words):
                raise MsiFormatError("string pool is truncated")
            length = (words[index + 3] << 16) + words[index + 2]
            index += 4
        else:
            index += 2
        if offset + length > len(data):
            raise MsiFormatError("string data is truncated")
        strings.append(data[offset : offset + length].decode(encoding, errors="replace"))
        offset += length
    return strings, ref_width


def parse_property_table(table: bytes, strings: list[str], ref_width: int) -> dict[str, str]:
    """Decode the two string columns (Property, Value) of the Property table."""
    row_size = 2 * ref_width
    if len(table) % row_size:
        raise MsiFormatError("Property table size is not a whole number of rows")
    rows = len(table) // row_size

    def ref(position: int) -> str:
        start = position * ref_width
        index = int.from_bytes(table[start : start + ref_width], "little")
        if index >= len(strings):
            raise MsiFormatError(f"string reference {index} is out of range")
        return strings[index]

    return {ref(row): ref(rows + row) for row in range(rows) if ref(row)}


def lcid_to_locale(value: str | None) -> str | None:
    """Map a Windows LCID such as ``1033`` to a BCP 47 tag such as ``en-US``."""
    if not value:
        return None
    try:
        lcid = int(value.split(",", 1)[0])
    except ValueError:
        return None
    name = locale.windows_locale.get(lcid)
    return name.replace("_", "-") if name else None


def _text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("cp1252", errors="replace")
    text = str(value).strip("\0 ")
    return text or None


def read_msi(path: Path) -> MsiDatabase:
    """Open ``path`` read-only and collect its summary information and properties."""
    if not olefile.isOleFile(str(path)):
        raise MsiFormatError(f"{path} is not an OLE compound document")
    try:
        with olefile.OleFileIO(str(path)) as ole:
            metadata = ole.get_metadata()
            streams = {
                decode_stream_name(entry[-1]): entry
                for entry in ole.listdir(streams=True, storages=False)
            }
            for required in ("!_StringPool", "!_StringData", "!Property"):
                if required not in streams:
                    raise MsiFormatError(f"{path} has no {required[1:]} stream")
            strings, ref_width = parse_string_pool(
                ole.openstream(streams["!_StringPool"]).read(),
                ole.openstream(streams["!_StringData"]).read(),
            )
            properties = parse_property_table(
                ole.openstream(streams["!Property"]).read(), strings, ref_width
            )
    except OSError as exc:
        raise MsiFormatError(f"{path} is not a readable installer database: {exc}") from exc
    database = MsiDatabase(
        template=_text(metadata.template) or "",
        subject=_text(metadata.subject),
        author=_text(metadata.author),
        comments=_text(metadata.comments),
        properties=properties,
    )
    logger.debug(
        "Read %d MSI properties from %s (template %r)", len(properties), path, database.template
    )
    return database
