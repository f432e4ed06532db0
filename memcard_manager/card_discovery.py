"""
memcard_manager/card_discovery.py
-----------------------------------------------------------------------------
Build ``CardRecord`` views by reconciling the card-images directory with the
metadata store.

Identifier resolution for a card file, in order:

1. A metadata record whose stored filename equals the file's name.
2. The filename stem itself, when it is purely alphanumeric and at least
   ``config.LEGACY_ID_MIN_LENGTH`` characters long (cards uploaded before
   the metadata store existed were stored as ``<id>.ps2``).
3. An id derived from the filename (``storage.derived_id``).  It is not
   persisted but is the same on every listing, and ``get_card`` resolves it
   by scanning the directory.  Renaming the card records it for good.

Records are read-only views; nothing here writes to disk.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

from memcard_manager import config, metadata_store, storage
from memcard_manager.schema import CardRecord

logger = logging.getLogger(__name__)

_ALNUM_RE = re.compile(r"^[a-z0-9]+$", re.IGNORECASE)


def _is_card_file(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in config.CARD_EXTENSIONS


def _looks_like_legacy_id(stem: str) -> bool:
    return len(stem) >= config.LEGACY_ID_MIN_LENGTH and bool(_ALNUM_RE.match(stem))


def _build_record(card_id: str, path: Path) -> CardRecord:
    stats = path.stat()
    # st_birthtime is not available on every platform/filesystem.
    created = getattr(stats, "st_birthtime", stats.st_ctime)
    return CardRecord(
        id=card_id,
        filename=path.name,
        name=metadata_store.get_name(card_id) or metadata_store.strip_card_extension(path.name),
        size=stats.st_size,
        path=str(path),
        created_at=datetime.fromtimestamp(created, tz=timezone.utc),
        modified_at=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
    )


def _report_stale_metadata(index: dict[str, str]) -> None:
    for filename, card_id in index.items():
        if not (config.CARDS_DIR / filename).is_file():
            logger.warning(
                "Metadata for card %s points at missing file %s", card_id, filename
            )


def _card_files() -> list[Path]:
    cards_dir = config.CARDS_DIR
    if not cards_dir.is_dir():
        return []
    return [
        cards_dir / entry
        for entry in sorted(os.listdir(cards_dir))
        if entry != config.METADATA_DIRNAME and _is_card_file(cards_dir / entry)
    ]


def _unrecorded_id(filename: str) -> str:
    stem = Path(filename).stem
    return stem if _looks_like_legacy_id(stem) else storage.derived_id(filename)


def list_cards() -> list[CardRecord]:
    """Every card image on disk, most recently modified first."""
    index = metadata_store.filename_index()
    _report_stale_metadata(index)

    records = [
        _build_record(index.get(path.name) or _unrecorded_id(path.name), path)
        for path in _card_files()
    ]
    return sorted(records, key=lambda r: r.modified_at, reverse=True)


def get_card(card_id: str) -> CardRecord | None:
    """
    Resolve one card by id.

    Tries the stored filename first, then the legacy ``<id>.ps2`` and
    ``<id>.mc2`` locations, then any unrecorded file whose derived id
    matches.  Returns ``None`` if no file is found.
    """
    stored = metadata_store.get_filename(card_id)
    if stored:
        path = config.CARDS_DIR / stored
        if path.is_file():
            return _build_record(card_id, path)
        logger.warning("Metadata for card %s points at missing file %s", card_id, stored)

    for ext in config.CARD_EXTENSIONS:
        path = storage.card_path(card_id, ext)
        if path.is_file():
            return _build_record(card_id, path)

    index = metadata_store.filename_index()
    for path in _card_files():
        if path.name not in index and storage.derived_id(path.name) == card_id:
            return _build_record(card_id, path)
    return None
