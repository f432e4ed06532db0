"""
Tests for memcard_manager/icon_cache.py – icon.sys titles and view.ico cache.

The external tool is replaced by fakes that write the requested file to the
``-o`` path, so the real decode / Pillow conversion code runs.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from PIL import Image

from memcard_manager.icon_cache import (
    TITLE_OFFSET,
    decode_title,
    enrich_save,
    extract_icon,
    extract_title,
    icon_file_path,
)
from memcard_manager.schema import CommandResult

# ── Helpers ──────────────────────────────────────────────────────────────────


def _icon_sys(title: bytes, size: int = TITLE_OFFSET + 64) -> bytes:
    blob = bytearray(size)
    blob[TITLE_OFFSET : TITLE_OFFSET + len(title)] = title
    return bytes(blob)


def _output_path(args: list[str]) -> Path:
    return Path(args[args.index("-o") + 1])


def _writer(payload: bytes, calls: list[list[str]] | None = None):
    def fake(args, stdin_payload=None, cwd=None):
        if calls is not None:
            calls.append(args)
        _output_path(args).write_bytes(payload)
        return CommandResult(exit_code=0)

    return fake


def _ico_bytes(tmp_path: Path) -> bytes:
    src = tmp_path / "src.ico"
    Image.new("RGBA", (16, 16), (200, 30, 30, 255)).save(src, format="ICO")
    return src.read_bytes()


# ── decode_title ─────────────────────────────────────────────────────────────


class TestDecodeTitle:
    def test_shift_jis_title(self) -> None:
        blob = _icon_sys("ＢＵＲＮＯＵＴ　２".encode("shift_jis"))
        assert decode_title(blob) == "ＢＵＲＮＯＵＴ　２"

    def test_truncates_at_nul_and_strips(self) -> None:
        blob = _icon_sys(b"  SSX 3  \x00garbage")
        assert decode_title(blob) == "SSX 3"

    def test_too_short_returns_none(self) -> None:
        assert decode_title(_icon_sys(b"Title", size=TITLE_OFFSET + 63)) is None

    def test_empty_field_returns_none(self) -> None:
        assert decode_title(_icon_sys(b"")) is None

    def test_invalid_bytes_return_none(self) -> None:
        # A lone Shift-JIS lead byte cannot be decoded.
        assert decode_title(_icon_sys(b"\x81")) is None


# ── extract_title ────────────────────────────────────────────────────────────


class TestExtractTitle:
    def test_extracts_and_cleans_up(self) -> None:
        calls: list[list[str]] = []
        fake = _writer(_icon_sys(b"Burnout 2"), calls)
        with patch("memcard_manager.icon_cache.run_command", side_effect=fake):
            title = extract_title("/cards/a.ps2", "BESLES-51044")

        assert title == "Burnout 2"
        args = calls[0]
        assert args[:3] == ["-i", "/cards/a.ps2", "extract"]
        assert args[-1] == "BESLES-51044/icon.sys"
        assert not _output_path(args).exists()

    def test_tool_failure_returns_none(self) -> None:
        with patch("memcard_manager.icon_cache.run_command") as mock_run:
            mock_run.return_value = CommandResult(stderr="no such file", exit_code=1)
            assert extract_title("/cards/a.ps2", "BESLES-51044") is None

    def test_temp_file_unique_per_call(self) -> None:
        calls: list[list[str]] = []
        fake = _writer(_icon_sys(b"X"), calls)
        with patch("memcard_manager.icon_cache.run_command", side_effect=fake):
            extract_title("/cards/a.ps2", "S1")
            extract_title("/cards/a.ps2", "S1")

        assert _output_path(calls[0]) != _output_path(calls[1])

    def test_short_file_returns_none_and_cleans_up(self) -> None:
        calls: list[list[str]] = []
        fake = _writer(b"PS2D", calls)
        with patch("memcard_manager.icon_cache.run_command", side_effect=fake):
            assert extract_title("/cards/a.ps2", "S1") is None
        assert not _output_path(calls[0]).exists()


# ── extract_icon ─────────────────────────────────────────────────────────────


class TestExtractIcon:
    def test_converts_and_caches(self, uploads: Path, tmp_path: Path) -> None:
        calls: list[list[str]] = []
        fake = _writer(_ico_bytes(tmp_path), calls)
        with patch("memcard_manager.icon_cache.run_command", side_effect=fake):
            route = extract_icon("/cards/a.ps2", "BESLES-51044", "BESLES-51044")

        assert route == "/resources/extracts/BESLES-51044/view.png"
        cache_dir = uploads / "extracts" / "BESLES-51044"
        assert (cache_dir / "view.png").is_file()
        assert not (cache_dir / "view.ico").exists()
        assert calls[0][-1] == "BESLES-51044/view.ico"
        with Image.open(cache_dir / "view.png") as img:
            assert img.format == "PNG"

    def test_second_call_uses_cache(self, uploads: Path, tmp_path: Path) -> None:
        fake = _writer(_ico_bytes(tmp_path))
        with patch("memcard_manager.icon_cache.run_command", side_effect=fake) as mock_run:
            first = extract_icon("/cards/a.ps2", "S1", "S1")
            assert mock_run.call_count == 1
            second = extract_icon("/cards/a.ps2", "S1", "S1")

        assert mock_run.call_count == 1
        assert second == first

    def test_unreadable_icon_returns_none(self, uploads: Path) -> None:
        fake = _writer(b"this is not an image")
        with patch("memcard_manager.icon_cache.run_command", side_effect=fake):
            assert extract_icon("/cards/a.ps2", "S1", "S1") is None

        cache_dir = uploads / "extracts" / "S1"
        assert not (cache_dir / "view.png").exists()
        assert not (cache_dir / "view.ico").exists()

    def test_tool_failure_returns_none(self, uploads: Path) -> None:
        with patch("memcard_manager.icon_cache.run_command") as mock_run:
            mock_run.return_value = CommandResult(stderr="not found", exit_code=1)
            assert extract_icon("/cards/a.ps2", "S1", "S1") is None

    def test_unusable_key_returns_none(self, uploads: Path) -> None:
        with patch("memcard_manager.icon_cache.run_command") as mock_run:
            assert extract_icon("/cards/a.ps2", "S1", "..") is None
        mock_run.assert_not_called()


class TestIconFilePath:
    def test_cached_icon_found(self, uploads: Path) -> None:
        cache_dir = uploads / "extracts" / "S1"
        cache_dir.mkdir()
        (cache_dir / "view.png").write_bytes(b"png")
        assert icon_file_path("S1") == cache_dir / "view.png"

    def test_missing_icon(self, uploads: Path) -> None:
        assert icon_file_path("S1") is None

    def test_traversal_is_confined(self, uploads: Path) -> None:
        assert icon_file_path("../memory-cards") is None


class TestEnrichSave:
    def test_failures_degrade_to_none(self, uploads: Path) -> None:
        with patch("memcard_manager.icon_cache.run_command") as mock_run:
            mock_run.return_value = CommandResult(stderr="boom", exit_code=1)
            enrichment = enrich_save("/cards/a.ps2", "S1")

        assert enrichment.game_title is None
        assert enrichment.icon_path is None

    def test_fields_are_independent(self, uploads: Path) -> None:
        def fake(args, stdin_payload=None, cwd=None):
            if args[-1].endswith("icon.sys"):
                _output_path(args).write_bytes(_icon_sys(b"Title"))
                return CommandResult(exit_code=0)
            return CommandResult(stderr="no view.ico", exit_code=1)

        with patch("memcard_manager.icon_cache.run_command", side_effect=fake):
            enrichment = enrich_save("/cards/a.ps2", "S1")

        assert enrichment.game_title == "Title"
        assert enrichment.icon_path is None
