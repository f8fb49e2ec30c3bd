"""Entity schemas and JSON helpers.

Every file or folder in the library is one entity row. Folders carry the
reserved type tag ``coll``; any other tag denotes a file kind.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal, TypeVar, Union

from pydantic import BaseModel, Field, field_validator

FOLDER_TYPE = "coll"
LINK_TYPE = "link"

T = TypeVar("T", bound="_JsonMixin")


class _JsonMixin(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls: type[T], data: str) -> T:
        return cls.model_validate_json(data)


class EntityBase(_JsonMixin):
    """Fields shared by files and folders.

    ``id`` is 0 only for a record that has not been stored yet.
    """

    id: int = Field(default=0, ge=0)
    name: str
    desc: str = ""
    type: str
    parent_id: int = Field(default=0, ge=0)
    size: int = Field(default=0, ge=0)
    date_added: date = Field(default_factory=date.today)
    downloads: int = Field(default=0, ge=0)
    is_deleted: bool = False
    extra_props: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v

    @property
    def is_folder(self) -> bool:
        return self.type == FOLDER_TYPE

    @property
    def is_link(self) -> bool:
        return self.type == LINK_TYPE

    @property
    def key(self) -> tuple[str, str, str, int]:
        """Sibling uniqueness key."""
        return (self.name, self.desc, self.type, self.parent_id)


class FolderEntry(EntityBase):
    type: Literal["coll"] = FOLDER_TYPE

    @field_validator("size")
    @classmethod
    def _no_size(cls, v: int) -> int:
        return 0


class FileEntry(EntityBase):
    @field_validator("type")
    @classmethod
    def _file_type(cls, v: str) -> str:
        if not v or v == FOLDER_TYPE:
            raise ValueError(f"file type must be a non-empty tag other than {FOLDER_TYPE!r}")
        return v


Entity = Union[FolderEntry, FileEntry]


def make_entity(**fields: Any) -> Entity:
    """Build the record class selected by the ``type`` field."""
    if fields.get("type", FOLDER_TYPE) == FOLDER_TYPE:
        fields["type"] = FOLDER_TYPE
        return FolderEntry(**fields)
    return FileEntry(**fields)


__all__ = [
    "FOLDER_TYPE",
    "LINK_TYPE",
    "EntityBase",
    "FolderEntry",
    "FileEntry",
    "Entity",
    "make_entity",
]
