"""Presentation info for entity type tags.

Maps the first three letters of a type tag to a display label and MIME type,
so ``htm``/``html`` and ``jpg``/``jpeg`` share an entry.
"""

from __future__ import annotations

from typing import NamedTuple


class TypeInfo(NamedTuple):
    label: str
    mime: str


_TYPE_INFO: dict[str, TypeInfo] = {
    "pdf": TypeInfo("PDF", "application/pdf"),
    "htm": TypeInfo("WEB", "text/html"),
    "lin": TypeInfo("WWW", ""),
    "col": TypeInfo("FOLDER", ""),
    "zip": TypeInfo("ZIP", "application/zip"),
    "apk": TypeInfo("APP", "application/octet-stream"),
    "doc": TypeInfo("DOC", "application/octet-stream"),
    "xls": TypeInfo("EXCEL", "application/octet-stream"),
    "jpg": TypeInfo("IMAGE", "image/jpeg"),
    "png": TypeInfo("IMAGE", "image/png"),
    "txt": TypeInfo("TXT", "text/plain"),
    "mp3": TypeInfo("MP3", "audio/mpeg"),
}

_DEFAULT = TypeInfo("FILE", "application/octet-stream")


def type_info(type_: str) -> TypeInfo:
    t3 = type_.lower()[:3]
    if t3 == "jpe":
        t3 = "jpg"
    return _TYPE_INFO.get(t3, _DEFAULT)


def content_disposition(type_: str) -> str:
    """HTML opens in the browser; everything else downloads."""
    return "inline" if type_.lower().startswith("htm") else "attachment"


def readable_size(size: int) -> str:
    """Human readable byte count, e.g. ``1.5MB``; empty for 0."""
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    if not size:
        return ""
    i = 0
    value = float(size)
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 1):g}{units[i]}"


__all__ = ["TypeInfo", "type_info", "content_disposition", "readable_size"]
