"""
memcard_manager/icon_cache.py
-----------------------------------------------------------------------------
Best-effort title and thumbnail extraction for saves on a card.

Every PS2 save directory carries two files this module cares about:

icon.sys
    Binary descriptor.  The game title is a 64-byte Shift-JIS field at
    offset 0xC0, NUL-terminated.
view.ico
    The save's icon resource.  It is extracted once, converted to PNG with
    Pillow, and kept in ``extracts/<save>/view.png`` so later listings of the
    same save spawn no process at all.

Failure policy
--------------
Nothing here raises.  Any failure (tool error, short file, undecodable
bytes, image the converter cannot read) yields ``None`` for that field and
is logged at debug level.  ``enrich_save`` bundles both lookups into a
``SaveEnrichment`` so batch listing code never needs a try/except.

Temporary files
---------------
icon.sys is extracted to a uniquely named file in the system temp dir
(nanosecond timestamp + random suffix) and removed in a ``finally`` block.
The raw view.ico intermediate is removed on success and failure alike.
Cleanup errors are swallowed.
"""

from __future__ import annotations

import logging
import secrets
import tempfile
import time
from pathlib import Path

from PIL import Image

from memcard_manager import config
from memcard_manager.command_runner import run_command
from memcard_manager.schema import SaveEnrichment

logger = logging.getLogger(__name__)

TITLE_OFFSET = 0xC0
TITLE_LENGTH = 64
TITLE_ENCODING = "shift_jis"

ICON_FILENAME = "view.png"
_RAW_ICON_FILENAME = "view.ico"
ICON_ROUTE_PREFIX = "/resources/extracts"


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        pass


def _safe_key(cache_key: str) -> str | None:
    """Reduce a cache key to a single path component, or None if unusable."""
    key = Path(cache_key).name
    if not key or key in (".", ".."):
        return None
    return key


def icon_route(cache_key: str) -> str:
    return f"{ICON_ROUTE_PREFIX}/{cache_key}/{ICON_FILENAME}"


def decode_title(raw: bytes) -> str | None:
    """
    Decode the title field of an icon.sys blob.

    Returns ``None`` when the blob is too short, the field is empty, or the
    bytes are not valid Shift-JIS.
    """
    if len(raw) < TITLE_OFFSET + TITLE_LENGTH:
        return None
    field = raw[TITLE_OFFSET : TITLE_OFFSET + TITLE_LENGTH]
    nul = field.find(b"\x00")
    if nul != -1:
        field = field[:nul]
    try:
        title = field.decode(TITLE_ENCODING).strip()
    except UnicodeDecodeError:
        return None
    return title or None


def extract_title(card_path: str | Path, save_name: str) -> str | None:
    """Extract ``<save_name>/icon.sys`` from the card and decode its title."""
    tmp_path = Path(tempfile.gettempdir()) / (
        f"icon-sys-{time.time_ns()}-{secrets.token_hex(4)}"
    )
    try:
        result = run_command(
            ["-i", str(card_path), "extract", "-o", str(tmp_path), f"{save_name}/icon.sys"]
        )
        if result.exit_code != 0:
            logger.debug("icon.sys extraction failed for %s: %s", save_name, result.output)
            return None
        return decode_title(tmp_path.read_bytes())
    except OSError as exc:
        logger.debug("icon.sys unreadable for %s: %s", save_name, exc)
        return None
    finally:
        _remove_quietly(tmp_path)


def extract_icon(card_path: str | Path, save_name: str, cache_key: str) -> str | None:
    """
    Return the route of the cached PNG thumbnail for a save.

    A cache hit returns immediately without invoking the tool.  On a miss the
    raw view.ico is extracted into ``extracts/<cache_key>/``, converted to
    PNG and deleted.

    Parameters
    ----------
    card_path : Card image the save lives on.
    save_name : Save directory name on the card.
    cache_key : Stable per-save key naming the cache directory.

    Returns
    -------
    str | None : ``/resources/extracts/<cache_key>/view.png`` or ``None``.
    """
    key = _safe_key(cache_key)
    if key is None:
        return None

    cache_dir = config.EXTRACTS_DIR / key
    cached = cache_dir / ICON_FILENAME
    if cached.is_file():
        return icon_route(key)

    raw = cache_dir / _RAW_ICON_FILENAME
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        result = run_command(
            ["-i", str(card_path), "extract", "-o", str(raw), f"{save_name}/view.ico"]
        )
        if result.exit_code != 0 or not raw.is_file():
            logger.debug("view.ico extraction failed for %s: %s", save_name, result.output)
            return None
        with Image.open(raw) as image:
            image.save(cached, format="PNG")
    except Exception as exc:
        # Pillow raises a variety of types for unreadable images; a broken
        # icon must never break the listing.
        logger.debug("view.ico conversion failed for %s: %s: %s", save_name, type(exc).__name__, exc)
        _remove_quietly(cached)
        return None
    finally:
        _remove_quietly(raw)

    return icon_route(key) if cached.is_file() else None


def icon_file_path(cache_key: str) -> Path | None:
    """Filesystem path of a cached thumbnail, or ``None`` if not cached."""
    key = _safe_key(cache_key)
    if key is None:
        return None
    path = config.EXTRACTS_DIR / key / ICON_FILENAME
    return path if path.is_file() else None


def enrich_save(card_path: str | Path, save_name: str) -> SaveEnrichment:
    """Look up title and thumbnail for one save; never raises."""
    return SaveEnrichment(
        game_title=extract_title(card_path, save_name),
        icon_path=extract_icon(card_path, save_name, save_name),
    )
