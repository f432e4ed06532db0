"""Tests for memcard_manager/storage.py – upload directories and card files."""

from __future__ import annotations

import re
from pathlib import Path

from memcard_manager import config, metadata_store, storage


class TestDirectories:
    def test_ensure_dirs_creates_all(self, tmp_path: Path, monkeypatch) -> None:
        root = tmp_path / "fresh"
        monkeypatch.setattr(config, "CARDS_DIR", root / "memory-cards")
        monkeypatch.setattr(config, "SAVES_DIR", root / "saves")
        monkeypatch.setattr(config, "EXPORTS_DIR", root / "exports")
        monkeypatch.setattr(config, "EXTRACTS_DIR", root / "extracts")

        storage.ensure_dirs()
        storage.ensure_dirs()

        assert sorted(p.name for p in root.iterdir()) == [
            "exports",
            "extracts",
            "memory-cards",
            "saves",
        ]


class TestIds:
    def test_new_id_is_hex_and_unique(self) -> None:
        ids = {storage.new_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(re.fullmatch(r"[0-9a-f]{32}", i) for i in ids)

    def test_derived_id_is_deterministic(self) -> None:
        assert storage.derived_id("My Backup.ps2") == storage.derived_id("My Backup.ps2")
        assert storage.derived_id("My Backup.ps2") != storage.derived_id("My Backup.mc2")
        assert re.fullmatch(r"[0-9a-f]{32}", storage.derived_id("x.ps2"))

    def test_legacy_card_path(self, uploads: Path) -> None:
        assert storage.card_path("abc") == uploads / "memory-cards" / "abc.ps2"
        assert storage.card_path("abc", ".mc2") == uploads / "memory-cards" / "abc.mc2"


class TestUploads:
    def test_card_upload_keeps_extension(self, uploads: Path) -> None:
        stored = storage.save_card_upload("My Card.mc2", b"data")

        path = Path(stored.path)
        assert path.parent == uploads / "memory-cards"
        assert path.name == f"{stored.id}.mc2"
        assert path.read_bytes() == b"data"
        assert stored.filename == "My Card.mc2"

    def test_card_upload_without_extension(self, uploads: Path) -> None:
        stored = storage.save_card_upload("card", b"data")
        assert stored.path.endswith(".ps2")

    def test_save_upload_staged_in_saves(self, uploads: Path) -> None:
        stored = storage.save_save_upload("burnout.max", b"save")

        path = Path(stored.path)
        assert path.parent == uploads / "saves"
        assert path.suffix == ".max"
        assert storage.file_exists(path)

        storage.delete_save_upload(path)
        assert not storage.file_exists(path)

    def test_delete_missing_save_upload_is_quiet(self, uploads: Path) -> None:
        storage.delete_save_upload(uploads / "saves" / "gone.max")


class TestDeleteCard:
    def test_deletes_stored_filename(self, uploads: Path, make_card) -> None:
        path = make_card("racing.ps2")
        metadata_store.set_name("abc", "Racing", ".ps2")

        assert storage.delete_card("abc") is True
        assert not path.exists()

    def test_falls_back_to_legacy_names(self, uploads: Path, make_card) -> None:
        path = make_card("legacycard01.mc2")
        assert storage.delete_card("legacycard01") is True
        assert not path.exists()

    def test_resolved_path_tried_first(self, uploads: Path, make_card) -> None:
        path = make_card("My Backup.ps2")
        assert storage.delete_card(storage.derived_id(path.name), path) is True
        assert not path.exists()

    def test_nothing_to_delete(self, uploads: Path) -> None:
        assert storage.delete_card("missing") is False
