"""Tests for memcard_manager/schema.py – Pydantic model validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from memcard_manager.schema import (
    CardMetadata,
    CardNameRequest,
    CommandResult,
    DfResult,
    SetFlagsRequest,
)

# ── CommandResult ────────────────────────────────────────────────────────────


class TestCommandResult:
    def test_output_prefers_stderr(self) -> None:
        assert CommandResult(stdout="out", stderr="err", exit_code=1).output == "err"

    def test_output_falls_back_to_stdout(self) -> None:
        assert CommandResult(stdout="out", exit_code=1).output == "out"

    def test_defaults(self) -> None:
        result = CommandResult()
        assert result.exit_code == 0
        assert not result.tool_missing and not result.timed_out


# ── DfResult ─────────────────────────────────────────────────────────────────


class TestDfResult:
    def test_negative_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DfResult(free=-1, used=0, total=8192)


# ── CardMetadata ─────────────────────────────────────────────────────────────


class TestCardMetadata:
    def test_accepts_camel_case(self) -> None:
        meta = CardMetadata.model_validate(
            {"name": "A", "filename": "a.ps2", "createdAt": "t1", "updatedAt": "t2"}
        )
        assert meta.created_at == "t1"
        assert meta.updated_at == "t2"

    def test_accepts_field_names(self) -> None:
        meta = CardMetadata(name="A", filename="a.ps2", created_at="t1", updated_at="t2")
        assert meta.model_dump(by_alias=True)["createdAt"] == "t1"

    def test_filename_required(self) -> None:
        with pytest.raises(ValidationError):
            CardMetadata.model_validate({"name": "A", "createdAt": "t", "updatedAt": "t"})


# ── Request bodies ───────────────────────────────────────────────────────────


class TestCardNameRequest:
    def test_valid(self) -> None:
        assert CardNameRequest(name="My Card").name == "My Card"

    @pytest.mark.parametrize("name", ["", "  \t ", "x" * 101])
    def test_rejected(self, name: str) -> None:
        with pytest.raises(ValidationError):
            CardNameRequest(name=name)

    def test_max_length_accepted(self) -> None:
        assert len(CardNameRequest(name="x" * 100).name) == 100


class TestSetFlagsRequest:
    def test_flags_required(self) -> None:
        with pytest.raises(ValidationError):
            SetFlagsRequest(file_path="S1", flags="")
