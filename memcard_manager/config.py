"""
memcard_manager/config.py
-----------------------------------------------------------------------------
Runtime configuration for the Memory Card Manager.

Every setting is read once at import time from the process environment
(a ``.env`` file in the working directory is loaded first, if present) so
values stay consistent for the lifetime of the process.

Other modules access these values as attributes of this module
(``config.CARDS_DIR``) rather than importing the names directly.  That keeps
a single point of truth and lets the test suite redirect the storage
directories with ``monkeypatch.setattr(config, ...)``.

Environment variables
---------------------
MYMCPLUSPLUS_CMD      – External tool executable (default: ``mymcplusplus``).
MEMCARD_UPLOADS_DIR   – Root directory for card images, staged saves,
                        exports and the icon cache (default: ``uploads/``
                        next to the package).
MYMCPLUSPLUS_TIMEOUT  – Seconds before a hung tool process is killed.
                        ``0`` disables the timeout.
LEGACY_ID_MIN_LENGTH  – Minimum filename-stem length for a file without
                        metadata to be adopted as a legacy identifier.
MAX_UPLOAD_SIZE       – Maximum accepted upload size in bytes.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env if present (no-op if the file doesn't exist)
load_dotenv()

_HERE = Path(__file__).parent

# -----------------------------------------------------------------------------
# External tool
# -----------------------------------------------------------------------------

MYMCPLUSPLUS_CMD: str = os.getenv("MYMCPLUSPLUS_CMD", "mymcplusplus")

_timeout = float(os.getenv("MYMCPLUSPLUS_TIMEOUT", "60"))
COMMAND_TIMEOUT: float | None = _timeout if _timeout > 0 else None

INSTALL_HINT: str = (
    "Installation: pip install mymcplusplus\n"
    "Alternatively, set the MYMCPLUSPLUS_CMD environment variable to the full "
    "path of the mymcplusplus executable."
)

# -----------------------------------------------------------------------------
# Storage layout
# -----------------------------------------------------------------------------

UPLOADS_DIR: Path = Path(os.getenv("MEMCARD_UPLOADS_DIR", str(_HERE.parent / "uploads")))
CARDS_DIR: Path = UPLOADS_DIR / "memory-cards"
SAVES_DIR: Path = UPLOADS_DIR / "saves"
EXPORTS_DIR: Path = UPLOADS_DIR / "exports"
EXTRACTS_DIR: Path = UPLOADS_DIR / "extracts"

# Lives inside CARDS_DIR; discovery must skip it.
METADATA_DIRNAME: str = ".metadata"

# -----------------------------------------------------------------------------
# Cards
# -----------------------------------------------------------------------------

CARD_EXTENSIONS: tuple[str, ...] = (".ps2", ".mc2")
DEFAULT_CARD_EXTENSION: str = ".ps2"

# A file stem must be at least this long (and purely alphanumeric) to be
# adopted as an identifier from before the metadata store existed.
LEGACY_ID_MIN_LENGTH: int = int(os.getenv("LEGACY_ID_MIN_LENGTH", "11"))

MAX_UPLOAD_SIZE: int = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))


def metadata_dir() -> Path:
    """Directory holding one ``<id>.json`` sidecar per card."""
    return CARDS_DIR / METADATA_DIRNAME
