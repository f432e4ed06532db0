"""
memcard_manager/storage.py
-----------------------------------------------------------------------------
Owner of the physical files under the uploads root.

Directories
-----------
memory-cards/  – card images (plus the ``.metadata/`` sidecar directory).
saves/         – standalone save files staged for import.
exports/       – export outputs; also the tool's working dir for ``export``.
extracts/      – icon-extraction cache, one subdirectory per save.

All paths are resolved through ``config`` at call time.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from memcard_manager import config, metadata_store
from memcard_manager.schema import StoredUpload

logger = logging.getLogger(__name__)


def ensure_dirs() -> None:
    """Create all four storage directories (idempotent)."""
    for directory in (
        config.CARDS_DIR,
        config.SAVES_DIR,
        config.EXPORTS_DIR,
        config.EXTRACTS_DIR,
    ):
        directory.mkdir(parents=True, exist_ok=True)


def new_id() -> str:
    """Mint a fresh card / upload identifier (32 lowercase hex chars)."""
    return uuid.uuid4().hex


# Fixed namespace so the same filename always yields the same id.
_FILENAME_NAMESPACE = uuid.UUID("6f1c3a52-8d0e-4b7a-9c51-2e4f7d9b0a13")


def derived_id(filename: str) -> str:
    """Stable identifier for a card file that has no metadata record yet."""
    return uuid.uuid5(_FILENAME_NAMESPACE, filename).hex


def file_exists(path: str | Path) -> bool:
    return Path(path).exists()


def card_path(card_id: str, extension: str = config.DEFAULT_CARD_EXTENSION) -> Path:
    """Legacy id-based location of a card image, ``<id><extension>``."""
    return config.CARDS_DIR / f"{card_id}{extension}"


def _suffix(filename: str) -> str:
    return Path(filename).suffix


def save_card_upload(filename: str, content: bytes) -> StoredUpload:
    """
    Write an uploaded card image under a fresh id.

    The file is stored as ``<id><ext>`` where ``ext`` comes from the
    original filename (``.ps2`` when it has none).  Callers normally follow
    up with ``metadata_store.set_name`` to move it to its friendly name.
    """
    ensure_dirs()
    card_id = new_id()
    path = card_path(card_id, _suffix(filename) or config.DEFAULT_CARD_EXTENSION)
    path.write_bytes(content)
    return StoredUpload(id=card_id, path=str(path), filename=filename)


def save_save_upload(filename: str, content: bytes) -> StoredUpload:
    """Stage a standalone save file (``.max``, ``.psu``, ...) for import."""
    ensure_dirs()
    upload_id = new_id()
    path = config.SAVES_DIR / f"{upload_id}{_suffix(filename)}"
    path.write_bytes(content)
    return StoredUpload(id=upload_id, path=str(path), filename=filename)


def delete_save_upload(path: str | Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to remove staged save %s: %s", path, exc)


def delete_card(card_id: str, path: str | Path | None = None) -> bool:
    """
    Delete the card image belonging to ``card_id``.

    ``path`` is the location discovery resolved for the card, when the
    caller has it; it is tried first.  Then come the filename stored in the
    metadata store and the legacy ``<id>.ps2`` and ``<id>.mc2``.  Returns
    whether a file was removed; the metadata record itself is left to the
    caller.
    """
    candidates: list[Path] = []
    if path is not None:
        candidates.append(Path(path))
    stored = metadata_store.get_filename(card_id)
    if stored:
        candidates.append(config.CARDS_DIR / stored)
    candidates += [card_path(card_id, ".ps2"), card_path(card_id, ".mc2")]

    for candidate in candidates:
        if file_exists(candidate):
            candidate.unlink()
            return True
    return False
