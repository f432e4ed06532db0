"""
memcard_manager/card_gateway.py
-----------------------------------------------------------------------------
One function per ``mymcplusplus`` subcommand, each turning the tool's exit
status and line-oriented text output into structured results.

The tool owns every detail of the PS2 card format; this module only builds
argument lists, interprets exit codes, and parses stdout.

Error policy
------------
• Spawn failure            → ``ExternalToolMissing`` (install guidance).
• Non-zero exit / timeout  → ``ExternalToolFailure`` with the captured text,
                             or ``SaveAlreadyExists`` for import conflicts.
• Unparseable output       → documented fallback values, no exception.
• Title / icon enrichment  → absorbed by ``icon_cache``; never fails a call.

Output formats parsed here
--------------------------
df   : "<card>: <N> bytes free."
ls   : "<mode> <count> <YYYY-MM-DD> <HH:MM:SS> <name...>" per line
dir  : per save, "<product code>  <title>" then "<N>KB <Not Protected|Protected>"
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path

from memcard_manager import config
from memcard_manager.command_runner import run_command
from memcard_manager.errors import (
    ExternalToolFailure,
    ExternalToolMissing,
    SaveAlreadyExists,
)
from memcard_manager.icon_cache import enrich_save, extract_icon, extract_title
from memcard_manager.schema import (
    CheckResult,
    CommandResult,
    DfResult,
    SaveDetails,
    SaveEntry,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

# Standard PS2 memory card capacity; the tool only reports free space.
TOTAL_BYTES: int = 8 * 1024 * 1024
TOTAL_KB: int = TOTAL_BYTES // 1024

EXPORT_FORMATS: tuple[str, ...] = ("max", "psu", "sps", "xps", "cbs", "psv")

# Product-code prefix → region.  First match wins; unknown prefixes have no
# region.
REGION_PREFIXES: dict[str, str] = {
    "BESLES": "Europe (PAL)",
    "BASLUS": "USA (NTSC-U)",
    "BISLPM": "Japan (NTSC-J)",
}

_DF_RE = re.compile(r"(\d+)\s*bytes?\s*free", re.IGNORECASE)
_SIZE_KB_RE = re.compile(r"(\d+)\s*KB", re.IGNORECASE)
_IMPORT_CONFLICT_RE = re.compile(r"[/\\]([^/:\\]+):\s*directory exists", re.IGNORECASE)

# -----------------------------------------------------------------------------
# Internal helpers
# -----------------------------------------------------------------------------


def _card_args(card_path: str | Path, *rest: str) -> list[str]:
    return ["-i", str(card_path), *rest]


def _raise_for(result: CommandResult, operation: str) -> None:
    """Raise the matching domain error for an unsuccessful result."""
    if result.tool_missing:
        raise ExternalToolMissing(result.stderr)
    if result.exit_code != 0:
        raise ExternalToolFailure(operation, result.exit_code, result.output)


def _run(card_path: str | Path, operation: str, *rest: str) -> CommandResult:
    result = run_command(_card_args(card_path, *rest))
    _raise_for(result, operation)
    return result


# -----------------------------------------------------------------------------
# Pure parsers
# -----------------------------------------------------------------------------


def region_for_product_code(product_code: str) -> str | None:
    for prefix, region in REGION_PREFIXES.items():
        if product_code.startswith(prefix):
            return region
    return None


def parse_df_output(output: str) -> DfResult:
    """
    Convert ``df`` output into KB figures against the fixed 8 MiB capacity.

    Without a "<N> bytes free" figure the result is the safe fallback
    ``free=0, used=0, total=8192``.
    """
    match = _DF_RE.search(output)
    if not match:
        return DfResult(free=0, used=0, total=TOTAL_KB)
    free_kb = int(match.group(1)) // 1024
    # Derived from the rounded free figure so free + used == total.
    return DfResult(free=free_kb, used=max(TOTAL_KB - free_kb, 0), total=TOTAL_KB)


def _parse_timestamp(date: str, time: str) -> datetime | None:
    try:
        return datetime.fromisoformat(f"{date}T{time}")
    except ValueError:
        return None


def parse_ls_output(output: str) -> list[SaveEntry]:
    """
    Parse ``ls`` output into unenriched ``SaveEntry`` objects, in order.

    Lines with fewer than five fields and the ``.`` / ``..`` entries are
    dropped.  The name is everything after the time field, re-joined with
    single spaces.  An unparseable date leaves ``date`` unset.
    """
    entries: list[SaveEntry] = []
    for line in output.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed in (".", "..") or trimmed.endswith((" .", " ..")):
            continue
        parts = trimmed.split()
        if len(parts) < 5:
            continue

        mode, count, date, time = parts[:4]
        name = " ".join(parts[4:])
        if name in (".", ".."):
            continue

        try:
            file_count = int(count)
        except ValueError:
            file_count = None

        entries.append(
            SaveEntry(
                name=name,
                path=name,
                mode=mode,
                file_count=file_count,
                date=_parse_timestamp(date, time),
                product_code=name,
                region=region_for_product_code(name),
            )
        )
    return entries


def parse_dir_output(output: str, save_id: str | None = None) -> dict[str, str | int | None]:
    """
    Parse one two-line save block of ``dir`` output.

    ``dir`` describes every save on the card, each as a header line
    "<product code>  <title>" followed by a "<N>KB <status>" line.  The block
    whose product code equals ``save_id`` is used; without a match (or
    without ``save_id``) the first block is.

    Returns a dict with ``product_code``, ``game_title``, ``size_kb`` and
    ``protection_status``; any field that is not present is ``None``.
    """
    lines = output.strip().split("\n")
    parsed: dict[str, str | int | None] = {
        "product_code": None,
        "game_title": None,
        "size_kb": None,
        "protection_status": None,
    }

    start = 0
    if save_id:
        for i, line in enumerate(lines):
            fields = line.split()
            if fields and fields[0] == save_id:
                start = i
                break

    header = lines[start].strip()
    if header:
        parts = re.split(r"\s{2,}", header)
        parsed["product_code"] = parts[0].strip() or None
        if len(parts) > 1:
            parsed["game_title"] = " ".join(parts[1:]).strip() or None

    if start + 1 < len(lines):
        line1 = lines[start + 1].strip()
        size = _SIZE_KB_RE.search(line1)
        if size:
            parsed["size_kb"] = int(size.group(1))
        # "Protected" is a substring of "Not Protected"; test the longer one first.
        if "Not Protected" in line1:
            parsed["protection_status"] = "Not Protected"
        elif "Protected" in line1:
            parsed["protection_status"] = "Protected"

    return parsed


def parse_import_conflict(message: str) -> str:
    """Name of the save an import collided with, from the tool's message."""
    match = _IMPORT_CONFLICT_RE.search(message)
    return match.group(1) if match else "the save"


# -----------------------------------------------------------------------------
# Card-level operations
# -----------------------------------------------------------------------------


def format_card(card_path: str | Path) -> None:
    """
    Create a freshly formatted card at ``card_path``.

    The tool refuses to overwrite, so an existing file is deleted first.
    """
    path = Path(card_path)
    if path.exists():
        path.unlink()
    _run(path, "Format", "format")


def df(card_path: str | Path) -> DfResult:
    return parse_df_output(_run(card_path, "DF", "df").stdout)


def list_contents(card_path: str | Path) -> list[SaveEntry]:
    """
    List the saves on a card, each enriched with title and thumbnail.

    Enrichment runs sequentially, one save at a time, which bounds the
    number of concurrent tool processes to one per request.
    """
    result = _run(card_path, "List", "ls")
    entries = parse_ls_output(result.stdout)
    for entry in entries:
        enrichment = enrich_save(card_path, entry.name)
        entry.game_title = enrichment.game_title
        entry.icon_path = enrichment.icon_path
    return entries


def check(card_path: str | Path) -> CheckResult:
    """
    Run the tool's consistency check.

    A non-zero exit becomes a single error entry; a successful run whose
    output mentions "warning" becomes a single warning entry.
    """
    result = run_command(_card_args(card_path, "check"))
    if result.tool_missing:
        raise ExternalToolMissing(result.stderr)

    errors: list[str] = []
    warnings: list[str] = []
    if result.exit_code != 0:
        errors.append(result.output)
    elif "warning" in result.stdout.lower():
        warnings.append(result.stdout)

    return CheckResult(errors=errors, warnings=warnings, clean=not errors and not warnings)


def mkdir(card_path: str | Path, dir_path: str) -> None:
    _run(card_path, "Mkdir", "mkdir", dir_path)


def add_file(card_path: str | Path, source_file_path: str, target_path: str | None = None) -> None:
    args = ["add", source_file_path]
    if target_path:
        args.append(target_path)
    _run(card_path, "Add", *args)


def extract_file(card_path: str | Path, source_path: str) -> Path:
    """Extract one file from the card into ``extracts/`` and return its path."""
    config.EXTRACTS_DIR.mkdir(parents=True, exist_ok=True)
    output_path = config.EXTRACTS_DIR / Path(source_path).name
    _run(card_path, "Extract", "extract", source_path, str(output_path))
    return output_path


def set_flags(card_path: str | Path, file_path: str, flags: str) -> None:
    _run(card_path, "Set flags", "set", file_path, flags)


def clear_flags(card_path: str | Path, file_path: str) -> None:
    _run(card_path, "Clear flags", "clear", file_path)


# -----------------------------------------------------------------------------
# Save-level operations
# -----------------------------------------------------------------------------


def get_save_details(card_path: str | Path, save_id: str) -> SaveDetails:
    """
    Describe one save using the tool's ``dir`` output.

    When ``dir`` carries no title the icon.sys title is tried, then the bare
    product code.
    """
    result = _run(card_path, "Dir", "dir")
    parsed = parse_dir_output(result.stdout, save_id)

    product_code = parsed["product_code"]
    game_title = parsed["game_title"] or extract_title(card_path, save_id) or product_code

    return SaveDetails(
        id=save_id,
        product_code=product_code,
        game_title=game_title,
        region=region_for_product_code(product_code) if product_code else None,
        size_kb=parsed["size_kb"],
        protection_status=parsed["protection_status"],
        icon_path=extract_icon(card_path, save_id, save_id),
        details=result.stdout,
    )


def import_save(card_path: str | Path, save_file_path: str | Path) -> None:
    result = run_command(_card_args(card_path, "import", str(save_file_path)))
    if result.tool_missing:
        raise ExternalToolMissing(result.stderr)
    if result.exit_code != 0:
        message = result.output
        if "directory exists" in message:
            raise SaveAlreadyExists(parse_import_conflict(message), result.exit_code, message)
        raise ExternalToolFailure("Import", result.exit_code, message)


def export_save(card_path: str | Path, save_id: str, fmt: str = "max") -> Path:
    """
    Export a save and return the path of the produced file.

    The tool always writes ``<save_id>.psu`` into its working directory, so
    it is run with ``cwd`` set to ``exports/`` and the output is renamed to
    ``<save_id>.<fmt>`` afterwards.  Stale outputs are removed first because
    the tool does not overwrite.

    Raises
    ------
    ValueError          : ``fmt`` is not one of ``EXPORT_FORMATS``.
    ExternalToolFailure : Non-zero exit, or no output file was produced.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{fmt}'. Expected one of {EXPORT_FORMATS}.")

    output_dir = config.EXPORTS_DIR
    output_dir.mkdir(parents=True, exist_ok=True)
    psu_path = output_dir / f"{save_id}.psu"
    final_path = output_dir / f"{save_id}.{fmt}"
    psu_path.unlink(missing_ok=True)
    final_path.unlink(missing_ok=True)

    # Absolute, because the tool runs from another directory.
    absolute_card = Path(card_path).resolve()
    result = run_command(_card_args(absolute_card, "export", save_id), cwd=output_dir)
    _raise_for(result, "Export")

    if psu_path.is_file():
        if fmt == "psu":
            return psu_path
        psu_path.replace(final_path)
        return final_path
    if final_path.is_file():
        return final_path
    raise ExternalToolFailure(
        "Export",
        result.exit_code,
        f"Export file not found: expected {save_id}.psu or {save_id}.{fmt}",
    )


def delete_save(card_path: str | Path, save_id: str) -> None:
    _run(card_path, "Delete", "delete", save_id)
