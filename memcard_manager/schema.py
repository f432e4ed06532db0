"""
memcard_manager/schema.py
-----------------------------------------------------------------------------
Pydantic v2 models for the Memory Card Manager: the structured results the
gateway produces from tool output, the persisted card metadata, and every
request / response body of the HTTP API.

Design principles
-----------------
• Keep models thin – no business logic here.
• Optional fields default to ``None`` so a field that could not be parsed or
  enriched is simply absent from the JSON rather than a sentinel value.
• Request bodies validate their own bounds so route handlers only ever see
  well-formed input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ExportFormat = Literal["max", "psu", "sps", "xps", "cbs", "psv"]

# -----------------------------------------------------------------------------
# Subprocess
# -----------------------------------------------------------------------------


class CommandResult(BaseModel):
    """Buffered outcome of one external-tool invocation."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    tool_missing: bool = Field(
        default=False,
        description="True when the executable could not be spawned at all.",
    )
    timed_out: bool = Field(
        default=False,
        description="True when the process was killed after the configured timeout.",
    )

    @property
    def output(self) -> str:
        """Diagnostic text: stderr when present, otherwise stdout."""
        return self.stderr or self.stdout


# -----------------------------------------------------------------------------
# Gateway results
# -----------------------------------------------------------------------------


class DfResult(BaseModel):
    """
    Free / used / total space of a card, all in KB.

    ``used`` is ``total - free`` against a fixed 8 MiB capacity; the tool
    only reports free space.
    """

    free: int = Field(..., ge=0)
    used: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    unit: str = "KB"


class CheckResult(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    clean: bool = True


class SaveEntry(BaseModel):
    """
    One save directory on a card, as reported by ``ls`` and enriched with
    the icon.sys title and a cached thumbnail where those could be extracted.

    Recomputed on every listing; only the thumbnail persists (in the icon
    cache).
    """

    name: str = Field(..., description="Save directory name, unique within a card.")
    path: str = Field(..., description="Path of the save on the card (equals ``name``).")
    mode: str | None = Field(default=None, description="Access-mode flag string from ls.")
    file_count: int | None = Field(default=None, description="Directory entry count.")
    date: datetime | None = Field(default=None, description="Last modification time.")
    product_code: str | None = None
    region: str | None = None
    game_title: str | None = None
    icon_path: str | None = Field(
        default=None,
        description="Route of the cached PNG thumbnail, e.g. /resources/extracts/<save>/view.png.",
    )
    size_kb: int | None = None
    protection_status: str | None = None


class SaveDetails(BaseModel):
    """Single-save detail parsed from the tool's ``dir`` output."""

    id: str
    product_code: str | None = None
    game_title: str | None = None
    region: str | None = None
    size_kb: int | None = None
    protection_status: str | None = None
    icon_path: str | None = None
    details: str = Field(default="", description="Raw ``dir`` output, kept for display.")


class SaveEnrichment(BaseModel):
    """
    Best-effort per-save enrichment.  Each field is independently optional:
    a failed title extraction never hides a successfully cached icon, and
    neither can fail the listing that requested them.
    """

    game_title: str | None = None
    icon_path: str | None = None


# -----------------------------------------------------------------------------
# Card identity / storage
# -----------------------------------------------------------------------------


class CardMetadata(BaseModel):
    """
    Persisted sidecar for one card id.

    Stored on disk with camelCase timestamps
    (``{name, filename, createdAt, updatedAt}``) so files written by earlier
    deployments remain readable.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    filename: str
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")


class CardRecord(BaseModel):
    """Derived, non-persisted view of one card image file."""

    id: str
    filename: str
    name: str = Field(..., description="Display name (stored name or filename stem).")
    size: int = Field(..., description="File size in bytes.")
    path: str
    created_at: datetime
    modified_at: datetime


class StoredUpload(BaseModel):
    id: str
    path: str
    filename: str = Field(..., description="The original client-side filename.")


# -----------------------------------------------------------------------------
# API request bodies
# -----------------------------------------------------------------------------


class CardNameRequest(BaseModel):
    """Body for card creation and rename."""

    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty or whitespace")
        return v


class MkdirRequest(BaseModel):
    path: str = Field(..., min_length=1)


class AddFileRequest(BaseModel):
    source_file_path: str = Field(..., min_length=1)
    target_path: str | None = None


class ExtractFileRequest(BaseModel):
    source_path: str = Field(..., min_length=1)


class SetFlagsRequest(BaseModel):
    file_path: str = Field(..., min_length=1)
    flags: str = Field(..., min_length=1)


class ClearFlagsRequest(BaseModel):
    file_path: str = Field(..., min_length=1)


# -----------------------------------------------------------------------------
# API responses
# -----------------------------------------------------------------------------


class CardSummary(CardRecord):
    """A card as shown in the overview list, with space and save count."""

    free_bytes: int
    total_bytes: int
    save_count: int


class CardDetail(BaseModel):
    card: CardRecord
    df: DfResult
    contents: list[SaveEntry]


class SaveDetailResponse(BaseModel):
    card: CardRecord
    save: SaveEntry
    details: str | None = None


class ExtractResponse(BaseModel):
    path: str


class ToolStatus(BaseModel):
    command: str
    available: bool
