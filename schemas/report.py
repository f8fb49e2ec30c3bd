"""Rebuild report schema.

The report is what the refresh trigger hands back to its caller (e.g. as an
HTTP JSON body). Counters only move when the store actually changes, so a
rebuild over unchanged storage reports zero additions, updates and deletions.
"""

from __future__ import annotations

from typing import List, Optional, TypeVar

from pydantic import BaseModel, Field, computed_field

from core.errors import ErrorKind

T = TypeVar("T", bound="_JsonMixin")


class _JsonMixin(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls: type[T], data: str) -> T:
        return cls.model_validate_json(data)


class ReportIssue(_JsonMixin):
    kind: ErrorKind
    path: Optional[str] = None
    entity_id: Optional[int] = None
    message: str = ""


class RebuildReport(_JsonMixin):
    root: str = ""
    scope_folder_id: int = 0
    recursive: bool = True

    entries_processed: int = 0
    files_added: int = 0
    files_updated: int = 0
    folders_added: int = 0
    folders_updated: int = 0
    restored: int = 0
    unchanged: int = 0
    renamed: int = 0
    marked_deleted: int = 0
    skipped: int = 0

    # Legacy stats import diagnostics
    legacy_matched: int = 0
    legacy_unmatched: int = 0
    unused_legacy: List[str] = Field(default_factory=list)

    issues: List[ReportIssue] = Field(default_factory=list)

    @computed_field
    @property
    def added(self) -> int:
        return self.files_added + self.folders_added

    @computed_field
    @property
    def updated(self) -> int:
        return self.files_updated + self.folders_updated

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.updated or self.marked_deleted or self.renamed)

    def add_issue(
        self,
        kind: ErrorKind,
        *,
        path: Optional[str] = None,
        entity_id: Optional[int] = None,
        message: str = "",
    ) -> None:
        self.issues.append(ReportIssue(kind=kind, path=path, entity_id=entity_id, message=message))

    def issues_of(self, kind: ErrorKind) -> list[ReportIssue]:
        return [i for i in self.issues if i.kind == kind]
