"""Normalization of raw reMarkable Cloud records into remote items."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from backend.models.document import FileKind
from backend.services.datetime_service import parse_optional_datetime
from backend.services.hierarchy import TreeNode, build_forest

logger = logging.getLogger(__name__)

COLLECTION_TYPE = "CollectionType"


class ItemKind(StrEnum):
    FOLDER = "folder"
    FILE = "file"


class RawDocument(BaseModel):
    """One record of the document-storage listing, as sent by the cloud.

    Only ``ID`` is mandatory. Display fields, ``Version`` and ``ModifiedClient``
    of the wrong type are coalesced to None so the record still counts as
    present. A ``Parent`` that is not a string fails validation, since the
    item cannot be placed in the tree.
    The misspelled ``VissibleName`` is the field name used by the API.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="ID", min_length=1)
    visible_name: str | None = Field(default=None, alias="VissibleName")
    type: str | None = Field(default=None, alias="Type")
    parent: str | None = Field(default=None, alias="Parent")
    version: int | None = Field(default=None, alias="Version")
    modified_client: str | None = Field(default=None, alias="ModifiedClient")

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return ""
        return value

    @field_validator("parent", mode="before")
    @classmethod
    def _blank_parent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("visible_name", "type", "modified_client", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    @field_validator("version", mode="before")
    @classmethod
    def _lenient_version(cls, value: Any) -> int | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return None


@dataclass(frozen=True)
class RemoteItem:
    """Canonical shape of a remote file or folder."""

    id: str
    name: str
    kind: ItemKind
    parent_id: str | None
    version: int
    last_modified_at: datetime | None
    file_kind: FileKind

    @property
    def is_folder(self) -> bool:
        return self.kind is ItemKind.FOLDER


@dataclass
class ParsedDocuments:
    """Parser output: canonical items plus their parent/children forest."""

    items: list[RemoteItem]
    hierarchy: list[TreeNode[RemoteItem]]
    rejected: int = 0
    rejected_reasons: list[str] = field(default_factory=list)
    rejected_ids: list[str] = field(default_factory=list)


def get_file_kind(name: str, is_folder: bool) -> FileKind:
    """Derive the source format from the item type and name suffix."""
    if is_folder:
        return FileKind.FOLDER
    if name.endswith(".pdf"):
        return FileKind.PDF
    if name.endswith(".epub"):
        return FileKind.EPUB
    return FileKind.NOTEBOOK


def to_remote_item(raw: RawDocument) -> RemoteItem:
    """Canonicalize one validated raw record."""
    is_folder = raw.type == COLLECTION_TYPE
    name = raw.visible_name or raw.id
    version = raw.version if raw.version is not None and raw.version > 0 else 1
    return RemoteItem(
        id=raw.id,
        name=name,
        kind=ItemKind.FOLDER if is_folder else ItemKind.FILE,
        parent_id=raw.parent,
        version=version,
        last_modified_at=parse_optional_datetime(raw.modified_client),
        file_kind=get_file_kind(raw.visible_name or "", is_folder),
    )


def build_hierarchy(items: Iterable[RemoteItem]) -> list[TreeNode[RemoteItem]]:
    """Build the folder forest from flat parent ids."""
    return build_forest(items, key=lambda item: item.id, parent_key=lambda item: item.parent_id)


def parse_documents(records: Iterable[Mapping[str, Any]]) -> ParsedDocuments:
    """Validate and canonicalize a raw listing and build its hierarchy.

    Records that fail validation are skipped and counted in ``rejected``;
    those that still carry a usable ``ID`` are listed in ``rejected_ids``.
    Raises HierarchyCycleError when parent references loop.
    """
    items: list[RemoteItem] = []
    rejected_reasons: list[str] = []
    rejected_ids: list[str] = []
    for index, record in enumerate(records):
        try:
            raw = RawDocument.model_validate(record)
        except ValidationError as exc:
            reason = f"record {index}: {exc.error_count()} validation error(s)"
            logger.warning("Skipping invalid remote record %d: %s", index, exc)
            rejected_reasons.append(reason)
            record_id = record.get("ID") if isinstance(record, Mapping) else None
            if isinstance(record_id, str) and record_id.strip():
                rejected_ids.append(record_id)
            continue
        items.append(to_remote_item(raw))

    hierarchy = build_hierarchy(items)
    logger.info("Parsed %d documents into hierarchy", len(items))
    return ParsedDocuments(
        items=items,
        hierarchy=hierarchy,
        rejected=len(rejected_reasons),
        rejected_reasons=rejected_reasons,
        rejected_ids=rejected_ids,
    )
