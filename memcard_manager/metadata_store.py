"""
memcard_manager/metadata_store.py
-----------------------------------------------------------------------------
JSON sidecar store mapping an opaque card id to its display name and the
sanitized filename of the card image on disk.

Layout
------
One pretty-printed JSON document per card::

    uploads/memory-cards/.metadata/<id>.json
    {"name": "...", "filename": "...", "createdAt": "...", "updatedAt": "..."}

Consistency
-----------
``filename`` must equal the card's current on-disk name.  ``set_name``
renames the file when the sanitized name changes; if that rename fails the
metadata is written anyway and the failure is logged.  Readers
(``card_discovery``) must therefore tolerate a record pointing at a file
that does not exist.

Missing or unreadable records read as ``None``; deletes of missing records
are no-ops.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from memcard_manager import config
from memcard_manager.schema import CardMetadata

logger = logging.getLogger(__name__)

_CARD_EXT_RE = re.compile(r"\.(ps2|mc2)$", re.IGNORECASE)

FALLBACK_NAME = "memory-card"

# -----------------------------------------------------------------------------
# Name helpers
# -----------------------------------------------------------------------------


def strip_card_extension(name: str) -> str:
    """Remove a trailing ``.ps2`` / ``.mc2`` (any case) from ``name``."""
    return _CARD_EXT_RE.sub("", name)


def sanitize_filename(name: str, extension: str) -> str:
    """
    Turn a user-chosen name into a filesystem-safe card filename.

    Lowercases, turns whitespace runs into ``_``, drops everything outside
    ``[a-z0-9_-]``, collapses repeated underscores and trims them from both
    ends.  An empty result becomes ``memory-card``.  ``extension`` may be
    given with or without its leading dot.

    >>> sanitize_filename("My Card!!", ".ps2")
    'my_card.ps2'
    """
    stem = strip_card_extension(name).lower()
    stem = re.sub(r"\s+", "_", stem)
    stem = re.sub(r"[^a-z0-9_-]", "", stem)
    stem = re.sub(r"_{2,}", "_", stem)
    stem = stem.strip("_")
    ext = extension[1:] if extension.startswith(".") else extension
    return f"{stem or FALLBACK_NAME}.{ext}"


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------


def _metadata_path(card_id: str) -> Path:
    return config.metadata_dir() / f"{card_id}.json"


def get_metadata(card_id: str) -> CardMetadata | None:
    """Read the sidecar for ``card_id``; ``None`` if absent or unreadable."""
    path = _metadata_path(card_id)
    if not path.is_file():
        return None
    try:
        return CardMetadata.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError) as exc:
        logger.warning("Ignoring unreadable metadata %s: %s", path, exc)
        return None


def _write_metadata(card_id: str, metadata: CardMetadata) -> None:
    config.metadata_dir().mkdir(parents=True, exist_ok=True)
    _metadata_path(card_id).write_text(
        json.dumps(metadata.model_dump(by_alias=True), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )


def get_name(card_id: str) -> str | None:
    metadata = get_metadata(card_id)
    return metadata.name if metadata and metadata.name else None


def get_filename(card_id: str) -> str | None:
    metadata = get_metadata(card_id)
    return metadata.filename if metadata and metadata.filename else None


def set_name(
    card_id: str,
    raw_name: str,
    extension: str,
    old_path: str | Path | None = None,
) -> str:
    """
    Store a display name for ``card_id`` and move its file to match.

    Parameters
    ----------
    card_id   : Card identifier.
    raw_name  : Name as typed by the user (a trailing card extension is
                ignored).
    extension : Extension for the sanitized filename, e.g. ``".ps2"``.
    old_path  : Current path of the card file, when the caller knows it
                (e.g. right after an upload stored it under its id).
                Otherwise the previously stored filename is used.

    Returns
    -------
    str : The sanitized filename now recorded for the card.
    """
    clean_name = strip_card_extension(raw_name)
    sanitized = sanitize_filename(clean_name, extension)

    existing = get_metadata(card_id)
    now = datetime.now(timezone.utc).isoformat()

    new_path = config.CARDS_DIR / sanitized
    source: Path | None = None
    if old_path is not None:
        if Path(old_path).name != sanitized:
            source = Path(old_path)
    elif existing is not None and existing.filename and existing.filename != sanitized:
        source = config.CARDS_DIR / existing.filename

    if source is not None:
        try:
            source.rename(new_path)
        except OSError as exc:
            logger.error("Failed to rename memory card file %s -> %s: %s", source, new_path, exc)

    _write_metadata(
        card_id,
        CardMetadata(
            name=clean_name,
            filename=sanitized,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        ),
    )
    return sanitized


def delete_metadata(card_id: str) -> None:
    _metadata_path(card_id).unlink(missing_ok=True)


def filename_index() -> dict[str, str]:
    """
    Map every stored filename to its card id in a single pass.

    Card discovery builds this once per call instead of scanning every
    sidecar for every card file.  When two records claim the same filename
    the alphabetically first id wins, matching a sorted linear scan.
    """
    index: dict[str, str] = {}
    meta_dir = config.metadata_dir()
    if not meta_dir.is_dir():
        return index
    for path in sorted(meta_dir.glob("*.json")):
        card_id = path.stem
        filename = get_filename(card_id)
        if filename and filename not in index:
            index[filename] = card_id
    return index
