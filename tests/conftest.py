"""Shared fixtures for the Memory Card Manager test suite."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from memcard_manager import config
from memcard_manager.main import app
from memcard_manager.schema import CommandResult


@pytest.fixture()
def uploads(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect every storage directory into ``tmp_path/uploads``."""
    root = tmp_path / "uploads"
    monkeypatch.setattr(config, "UPLOADS_DIR", root)
    monkeypatch.setattr(config, "CARDS_DIR", root / "memory-cards")
    monkeypatch.setattr(config, "SAVES_DIR", root / "saves")
    monkeypatch.setattr(config, "EXPORTS_DIR", root / "exports")
    monkeypatch.setattr(config, "EXTRACTS_DIR", root / "extracts")
    for name in ("memory-cards", "saves", "exports", "extracts"):
        (root / name).mkdir(parents=True)
    return root


@pytest.fixture()
def client(uploads: Path) -> TestClient:
    """FastAPI test client writing into the temporary uploads tree."""
    return TestClient(app)


@pytest.fixture()
def ok() -> CommandResult:
    return CommandResult(stdout="", stderr="", exit_code=0)


@pytest.fixture()
def make_card(uploads: Path):
    """Factory dropping a card image file straight into the cards directory."""

    def _make(filename: str, content: bytes = b"\x00" * 16) -> Path:
        path = uploads / "memory-cards" / filename
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture()
def sample_ls_output() -> str:
    return (
        "rwx--d----+----       2 2025-11-16 19:26:03 .\n"
        "rwx--d----+----       0 2025-11-16 19:26:03 ..\n"
        "rwx--d----+----       5 2025-11-16 19:26:03 BESLES-51044\n"
        "rwx--d----+----       4 2024-01-02 08:00:00 BASLUS-20312\n"
        "rwx--d----+----       3 2023-07-09 12:30:45 BISLPM-65530"
    )
