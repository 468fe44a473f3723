"""Typed views of ETAPI payloads.

The client converts every response into one of these models exactly once,
so the pipelines never deal with raw dicts or with the different wrappers
ETAPI uses (``{"note": ..., "branch": ...}`` from ``/create-note``,
``{"results": [...]}`` from ``/notes``).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class Attribute(BaseModel):
    """A label or relation attached to a note."""

    attribute_id: str = Field(default="", alias="attributeId")
    note_id: str = Field(default="", alias="noteId")
    type: str = "label"
    name: str
    value: str = ""
    position: int = 0
    is_inheritable: bool = Field(default=False, alias="isInheritable")

    model_config = {"frozen": True, "populate_by_name": True}


class Note(BaseModel):
    """Note metadata as returned by ``GET /notes/{id}``."""

    note_id: str = Field(alias="noteId")
    title: str = ""
    type: str = "text"
    mime: str = "text/html"
    is_protected: bool = Field(default=False, alias="isProtected")
    attributes: list[Attribute] = Field(default_factory=list)
    parent_note_ids: list[str] = Field(
        default_factory=list, alias="parentNoteIds"
    )
    child_note_ids: list[str] = Field(
        default_factory=list, alias="childNoteIds"
    )
    date_created: str | None = Field(default=None, alias="dateCreated")
    date_modified: str | None = Field(default=None, alias="dateModified")
    utc_date_created: str | None = Field(
        default=None, alias="utcDateCreated"
    )
    utc_date_modified: str | None = Field(
        default=None, alias="utcDateModified"
    )

    model_config = {"frozen": True, "populate_by_name": True}

    def label(self, name: str) -> str | None:
        """Value of the first label called ``name``, if any."""
        for attr in self.attributes:
            if attr.type == "label" and attr.name == name:
                return attr.value
        return None

    def labels(self, name: str) -> list[str]:
        return [
            a.value
            for a in self.attributes
            if a.type == "label" and a.name == name
        ]


class Attachment(BaseModel):
    """Attachment metadata as returned by ``GET /notes/{id}/attachments``."""

    attachment_id: str = Field(alias="attachmentId")
    owner_id: str = Field(default="", alias="ownerId")
    role: str = "file"
    mime: str = "application/octet-stream"
    title: str = ""
    position: int = 0
    content_length: int | None = Field(default=None, alias="contentLength")
    utc_date_modified: str | None = Field(
        default=None, alias="utcDateModified"
    )

    model_config = {"frozen": True, "populate_by_name": True}
