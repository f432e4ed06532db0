"""
memcard_manager/main.py
-----------------------------------------------------------------------------
FastAPI application entrypoint for the PS2 Memory Card Manager.

This module is a **thin routing layer**: each route handler resolves the
card, calls domain modules, and maps domain errors to HTTP errors.  All
business logic lives in dedicated modules:

Domain modules
~~~~~~~~~~~~~~
- ``memcard_manager.config``          – Environment-driven settings and paths.
- ``memcard_manager.schema``          – Pydantic v2 models.
- ``memcard_manager.command_runner``  – Buffered subprocess wrapper.
- ``memcard_manager.card_gateway``    – One function per tool subcommand.
- ``memcard_manager.icon_cache``      – icon.sys titles and cached thumbnails.
- ``memcard_manager.storage``         – Upload directories and card files.
- ``memcard_manager.metadata_store``  – Display names and sanitized filenames.
- ``memcard_manager.card_discovery``  – Card records from disk + metadata.

Run with:
    uvicorn memcard_manager.main:app --reload --host 127.0.0.1 --port 8243

Endpoints
---------
GET    /api/tool-status                         → is mymcplusplus runnable?
GET    /api/cards                               → all cards with space + save count
POST   /api/cards                               → create an empty formatted card
POST   /api/cards/upload                        → upload a .ps2 / .mc2 image
GET    /api/cards/{id}                          → card, df, and save listing
POST   /api/cards/{id}/rename                   → change display name (and file)
DELETE /api/cards/{id}                          → delete card file + metadata
GET    /api/cards/{id}/download                 → card image as attachment
POST   /api/cards/{id}/format                   → reformat in place
POST   /api/cards/{id}/check                    → consistency check
POST   /api/cards/{id}/mkdir                    → create a directory on the card
POST   /api/cards/{id}/add                      → add a host file to the card
POST   /api/cards/{id}/extract                  → extract a card file to extracts/
POST   /api/cards/{id}/flags                    → set mode flags
POST   /api/cards/{id}/flags/clear              → clear mode flags
POST   /api/cards/{id}/saves/import             → import a save-container upload
GET    /api/cards/{id}/saves/{save_id}          → save detail
DELETE /api/cards/{id}/saves/{save_id}          → delete a save
GET    /api/cards/{id}/saves/{save_id}/export   → export as max/psu/sps/xps/cbs/psv
GET    /resources/extracts/{save_id}/view.png   → cached save thumbnail

Architecture notes
------------------
- Every handler is a plain ``def``: each may spawn a subprocess, and FastAPI
  runs sync handlers in its threadpool so the event loop is never blocked.
- Error mapping: tool missing → 503, save conflict / name clash → 409,
  tool failure → 502, unknown card or save → 404.
"""

from __future__ import annotations

import logging
import re
import tomllib
from pathlib import Path

from fastapi import FastAPI, HTTPException, UploadFile
from fastapi.responses import FileResponse

from memcard_manager import (
    card_discovery,
    card_gateway,
    command_runner,
    config,
    metadata_store,
    storage,
)
from memcard_manager.errors import (
    CardNotFound,
    ExternalToolFailure,
    ExternalToolMissing,
    MemoryCardError,
    SaveAlreadyExists,
    SaveNotFound,
)
from memcard_manager.icon_cache import icon_file_path
from memcard_manager.schema import (
    AddFileRequest,
    CardDetail,
    CardNameRequest,
    CardRecord,
    CardSummary,
    CheckResult,
    ClearFlagsRequest,
    DfResult,
    ExportFormat,
    ExtractFileRequest,
    ExtractResponse,
    MkdirRequest,
    SaveDetailResponse,
    SetFlagsRequest,
    ToolStatus,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------

_HERE = Path(__file__).parent

# Create runtime directories up front; a fresh deployment has none.
storage.ensure_dirs()

# Read version from pyproject.toml (single source of truth).
_PYPROJECT = _HERE.parent / "pyproject.toml"
with open(_PYPROJECT, "rb") as _f:
    _APP_VERSION: str = tomllib.load(_f)["project"]["version"]

# Card ids are uuid hex for new cards and alphanumeric stems for legacy
# ones; anything else cannot name a card and is rejected before touching disk.
_CARD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

app = FastAPI(
    title="PS2 Memory Card Manager",
    description=(
        "Upload PlayStation 2 memory card images, browse their saves, and "
        "import / export / delete saves via mymcplusplus."
    ),
    version=_APP_VERSION,
)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _require_card(card_id: str) -> CardRecord:
    """Resolve a card or raise HTTPException(404)."""
    card = None
    if _CARD_ID_PATTERN.match(card_id):
        card = card_discovery.get_card(card_id)
    if card is None:
        raise HTTPException(status_code=404, detail=str(CardNotFound(card_id)))
    return card


def _http_error(exc: MemoryCardError) -> HTTPException:
    """Translate a domain error into the matching HTTPException."""
    if isinstance(exc, ExternalToolMissing):
        return HTTPException(status_code=503, detail=exc.message)
    if isinstance(exc, SaveAlreadyExists):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ExternalToolFailure):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, (CardNotFound, SaveNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _read_upload(file: UploadFile) -> bytes:
    """Read an upload, enforcing ``config.MAX_UPLOAD_SIZE``."""
    content = file.file.read(config.MAX_UPLOAD_SIZE + 1)
    if len(content) > config.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File size must be less than {config.MAX_UPLOAD_SIZE:,} bytes.",
        )
    return content


def _ensure_filename_free(filename: str, current: str | None = None) -> None:
    """409 if another card already occupies ``filename``."""
    if filename != current and (config.CARDS_DIR / filename).exists():
        raise HTTPException(
            status_code=409,
            detail=f"A memory card file named '{filename}' already exists.",
        )


# -----------------------------------------------------------------------------
# Tool status
# -----------------------------------------------------------------------------


@app.get("/api/tool-status", response_model=ToolStatus, summary="Check mymcplusplus availability")
def tool_status() -> ToolStatus:
    return ToolStatus(
        command=config.MYMCPLUSPLUS_CMD,
        available=command_runner.tool_available(),
    )


# -----------------------------------------------------------------------------
# Cards
# -----------------------------------------------------------------------------


@app.get("/api/cards", response_model=list[CardSummary], summary="List memory cards")
def list_cards() -> list[CardSummary]:
    """
    Return every card, most recently modified first, with free space and
    save count.

    A card the tool cannot read still appears: its free and total space
    fall back to the file size and its save count to zero.
    """
    summaries: list[CardSummary] = []
    for card in card_discovery.list_cards():
        try:
            df_result = card_gateway.df(card.path)
            contents = card_gateway.list_contents(card.path)
            free, total, count = df_result.free * 1024, df_result.total * 1024, len(contents)
        except MemoryCardError as exc:
            logger.warning("Could not read card %s: %s", card.id, exc)
            free, total, count = card.size, card.size, 0
        summaries.append(
            CardSummary(**card.model_dump(), free_bytes=free, total_bytes=total, save_count=count)
        )
    return summaries


@app.post(
    "/api/cards",
    response_model=CardRecord,
    status_code=201,
    summary="Create a new empty memory card",
)
def create_card(req: CardNameRequest) -> CardRecord:
    """
    Mint an id, record the name, and have the tool format a new card at the
    sanitized filename.
    """
    ext = config.DEFAULT_CARD_EXTENSION
    _ensure_filename_free(metadata_store.sanitize_filename(req.name, ext))

    storage.ensure_dirs()
    card_id = storage.new_id()
    filename = metadata_store.set_name(card_id, req.name, ext)
    try:
        card_gateway.format_card(config.CARDS_DIR / filename)
    except MemoryCardError as exc:
        metadata_store.delete_metadata(card_id)
        raise _http_error(exc) from exc

    return _require_card(card_id)


@app.post(
    "/api/cards/upload",
    response_model=CardRecord,
    status_code=201,
    summary="Upload a memory card image",
)
def upload_card(file: UploadFile) -> CardRecord:
    """
    Store an uploaded ``.ps2`` / ``.mc2`` image and name it after the upload.

    Raises
    ------
    HTTPException(400) : Wrong extension or file too large.
    HTTPException(409) : A card with the same sanitized filename exists.
    """
    original = file.filename or ""
    ext = Path(original).suffix.lower()
    if ext not in config.CARD_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only .ps2 and .mc2 files are allowed.")

    content = _read_upload(file)
    friendly = metadata_store.strip_card_extension(original)
    _ensure_filename_free(metadata_store.sanitize_filename(friendly, ext))

    stored = storage.save_card_upload(original, content)
    metadata_store.set_name(stored.id, friendly, ext, stored.path)
    return _require_card(stored.id)


@app.get("/api/cards/{card_id}", response_model=CardDetail, summary="Card detail and saves")
def get_card(card_id: str) -> CardDetail:
    """
    Return the card with its space usage and save listing.

    An unreadable card yields the df fallback and an empty listing rather
    than an error, so the card can still be renamed, formatted or deleted.
    """
    card = _require_card(card_id)
    try:
        df_result = card_gateway.df(card.path)
        contents = card_gateway.list_contents(card.path)
    except MemoryCardError as exc:
        logger.warning("Could not read card %s: %s", card.id, exc)
        df_result = DfResult(free=0, used=0, total=card_gateway.TOTAL_KB)
        contents = []
    return CardDetail(card=card, df=df_result, contents=contents)


@app.post("/api/cards/{card_id}/rename", response_model=CardRecord, summary="Rename a card")
def rename_card(card_id: str, req: CardNameRequest) -> CardRecord:
    """Change the display name; the file is renamed, its extension kept."""
    card = _require_card(card_id)
    ext = Path(card.filename).suffix or config.DEFAULT_CARD_EXTENSION
    _ensure_filename_free(metadata_store.sanitize_filename(req.name, ext), current=card.filename)
    metadata_store.set_name(card_id, req.name, ext, card.path)
    return _require_card(card_id)


@app.delete("/api/cards/{card_id}", status_code=204, summary="Delete a card")
def delete_card(card_id: str) -> None:
    card = _require_card(card_id)
    storage.delete_card(card_id, card.path)
    metadata_store.delete_metadata(card_id)


@app.get("/api/cards/{card_id}/download", summary="Download a card image")
def download_card(card_id: str) -> FileResponse:
    """Stream the image, named after the card's display name."""
    card = _require_card(card_id)
    ext = Path(card.filename).suffix or config.DEFAULT_CARD_EXTENSION
    return FileResponse(
        card.path,
        media_type="application/octet-stream",
        filename=metadata_store.sanitize_filename(card.name, ext),
    )


@app.post("/api/cards/{card_id}/format", response_model=CardRecord, summary="Format a card")
def format_card(card_id: str) -> CardRecord:
    card = _require_card(card_id)
    try:
        card_gateway.format_card(card.path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc
    return _require_card(card_id)


@app.post("/api/cards/{card_id}/check", response_model=CheckResult, summary="Check a card")
def check_card(card_id: str) -> CheckResult:
    card = _require_card(card_id)
    try:
        return card_gateway.check(card.path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc


@app.post("/api/cards/{card_id}/mkdir", status_code=204, summary="Create a directory on a card")
def make_directory(card_id: str, req: MkdirRequest) -> None:
    card = _require_card(card_id)
    try:
        card_gateway.mkdir(card.path, req.path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc


@app.post("/api/cards/{card_id}/add", status_code=204, summary="Add a file to a card")
def add_file(card_id: str, req: AddFileRequest) -> None:
    card = _require_card(card_id)
    try:
        card_gateway.add_file(card.path, req.source_file_path, req.target_path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc


@app.post("/api/cards/{card_id}/extract", response_model=ExtractResponse, summary="Extract a file")
def extract_file(card_id: str, req: ExtractFileRequest) -> ExtractResponse:
    card = _require_card(card_id)
    try:
        output = card_gateway.extract_file(card.path, req.source_path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc
    return ExtractResponse(path=str(output))


@app.post("/api/cards/{card_id}/flags", status_code=204, summary="Set mode flags")
def set_flags(card_id: str, req: SetFlagsRequest) -> None:
    card = _require_card(card_id)
    try:
        card_gateway.set_flags(card.path, req.file_path, req.flags)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc


@app.post("/api/cards/{card_id}/flags/clear", status_code=204, summary="Clear mode flags")
def clear_flags(card_id: str, req: ClearFlagsRequest) -> None:
    card = _require_card(card_id)
    try:
        card_gateway.clear_flags(card.path, req.file_path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc


# -----------------------------------------------------------------------------
# Saves
# -----------------------------------------------------------------------------


@app.post("/api/cards/{card_id}/saves/import", status_code=204, summary="Import a save file")
def import_save(card_id: str, file: UploadFile) -> None:
    """
    Stage an uploaded save container in ``saves/`` and import it.

    The staged copy is removed afterwards whether or not the import worked.
    """
    card = _require_card(card_id)
    content = _read_upload(file)
    staged = storage.save_save_upload(file.filename or "save", content)
    try:
        card_gateway.import_save(card.path, staged.path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc
    finally:
        storage.delete_save_upload(staged.path)


@app.get(
    "/api/cards/{card_id}/saves/{save_id}",
    response_model=SaveDetailResponse,
    summary="Save detail",
)
def get_save(card_id: str, save_id: str) -> SaveDetailResponse:
    """
    Return a save as listed by ``ls``, completed with ``dir`` details.

    The save must appear in the listing (404 otherwise).  A failing ``dir``
    call is tolerated: the listing data alone is returned.
    """
    card = _require_card(card_id)
    try:
        contents = card_gateway.list_contents(card.path)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc

    save = next((s for s in contents if save_id in (s.name, s.path)), None)
    if save is None:
        raise HTTPException(status_code=404, detail=str(SaveNotFound(card_id, save_id)))

    try:
        details = card_gateway.get_save_details(card.path, save_id)
    except MemoryCardError as exc:
        logger.warning("dir failed for %s on card %s: %s", save_id, card_id, exc)
        return SaveDetailResponse(card=card, save=save)

    merged = save.model_copy(
        update={
            "game_title": save.game_title or details.game_title,
            "product_code": save.product_code or details.product_code,
            "region": save.region or details.region,
            "protection_status": save.protection_status or details.protection_status,
            "size_kb": save.size_kb or details.size_kb,
            "icon_path": save.icon_path or details.icon_path,
        }
    )
    return SaveDetailResponse(card=card, save=merged, details=details.details)


@app.delete("/api/cards/{card_id}/saves/{save_id}", status_code=204, summary="Delete a save")
def delete_save(card_id: str, save_id: str) -> None:
    card = _require_card(card_id)
    try:
        card_gateway.delete_save(card.path, save_id)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc


@app.get("/api/cards/{card_id}/saves/{save_id}/export", summary="Export a save")
def export_save(card_id: str, save_id: str, format: ExportFormat = "max") -> FileResponse:
    """Export a save in the requested container format as an attachment."""
    card = _require_card(card_id)
    try:
        path = card_gateway.export_save(card.path, save_id, format)
    except MemoryCardError as exc:
        raise _http_error(exc) from exc
    return FileResponse(
        path,
        media_type="application/octet-stream",
        filename=f"{save_id}.{format}",
    )


# -----------------------------------------------------------------------------
# Resources
# -----------------------------------------------------------------------------


@app.get("/resources/extracts/{save_id}/view.png", include_in_schema=False)
def save_icon(save_id: str) -> FileResponse:
    path = icon_file_path(save_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Icon not found")
    return FileResponse(
        path,
        media_type="image/png",
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
