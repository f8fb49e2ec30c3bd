"""Structured file name codec.

Maps ``name[desc]{id}.type`` to its fields and back. ``[desc]`` and ``{id}``
are optional; a missing ``.type`` means the entry is a folder (``coll``). An
absent or non-numeric id decodes to 0, meaning "allocate a fresh id". Pure,
no I/O.

Example::

    >>> decode("Some Book[2nd edition]{4821}.pdf")
    ParsedName(name='Some Book', desc='2nd edition', id=4821, type='pdf')
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from core.errors import InvalidNameError
from schemas.entities import FOLDER_TYPE

_FILE_RE = re.compile(r"^([^\[]+?)(?:\[([^\]]*)\])?(?:\{([^{}]*)\})?(?:\.(\w+))?$")
# Folder names never carry a type suffix, so "Vol.2" stays whole.
_FOLDER_RE = re.compile(r"^([^\[]+?)(?:\[([^\]]*)\])?(?:\{([^{}]*)\})?$")


@dataclass(frozen=True)
class ParsedName:
    name: str
    desc: str = ""
    id: int = 0
    type: str = FOLDER_TYPE

    @property
    def is_folder(self) -> bool:
        return self.type == FOLDER_TYPE


def _parse_id(raw: str | None) -> int:
    if raw and raw.isascii() and raw.isdigit():
        return int(raw)
    return 0


def decode(file_name: str, *, is_folder: bool = False) -> ParsedName:
    """Split a structured file name into its fields.

    Args:
        file_name: Last path segment, e.g. ``Book[desc]{12}.pdf``.
        is_folder: Parse as a folder name (no ``.type`` suffix).

    Raises:
        InvalidNameError: The name does not match the grammar or its name
            part is blank.
    """
    m = (_FOLDER_RE if is_folder else _FILE_RE).match(file_name)
    if m is None:
        raise InvalidNameError(f"file name {file_name!r} can not be parsed")
    name = m.group(1).strip()
    if not name:
        raise InvalidNameError(f"file name {file_name!r} has an empty name part")
    type_ = FOLDER_TYPE if is_folder else (m.group(4) or FOLDER_TYPE)
    return ParsedName(name=name, desc=m.group(2) or "", id=_parse_id(m.group(3)), type=type_)


def encode(name: str, desc: str = "", entity_id: int = 0, type_: str = FOLDER_TYPE) -> str:
    """Compose a structured file name; inverse of :func:`decode`."""
    out = name
    if desc:
        out += f"[{desc}]"
    if entity_id:
        out += f"{{{entity_id}}}"
    if type_ != FOLDER_TYPE:
        out += f".{type_}"
    return out


def encode_parsed(parsed: ParsedName) -> str:
    return encode(parsed.name, parsed.desc, parsed.id, parsed.type)


__all__ = ["ParsedName", "decode", "encode", "encode_parsed"]
