"""
memcard_manager/errors.py
-----------------------------------------------------------------------------
Domain exceptions raised by the gateway, storage and discovery modules.

Route handlers in ``main.py`` translate these into ``HTTPException``s; the
domain modules themselves never import FastAPI.

Taxonomy
--------
ExternalToolMissing  – the tool executable could not be spawned.
ExternalToolFailure  – the tool exited non-zero (or timed out).
SaveAlreadyExists    – import refused because the save directory exists.
CardNotFound         – a card identifier does not resolve to a file.
SaveNotFound         – a save name is not present on the card.

Parse fallbacks and enrichment failures are *not* exceptions: they are
absorbed where they happen and degrade to documented defaults.
"""

from __future__ import annotations


class MemoryCardError(Exception):
    """Base class for every error this package raises on purpose."""


class ExternalToolMissing(MemoryCardError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ExternalToolFailure(MemoryCardError):
    """
    The external tool ran but reported failure.

    Attributes
    ----------
    operation : Human-readable operation name, e.g. ``"Export"``.
    exit_code : Process exit status.
    output    : Captured diagnostic text (stderr, or stdout when stderr
                was empty), preserved verbatim for operators.
    """

    def __init__(self, operation: str, exit_code: int, output: str) -> None:
        super().__init__(f"{operation} failed (exit {exit_code}): {output}")
        self.operation = operation
        self.exit_code = exit_code
        self.output = output


class SaveAlreadyExists(ExternalToolFailure):
    def __init__(self, save_id: str, exit_code: int, output: str) -> None:
        super().__init__("Import", exit_code, output)
        self.save_id = save_id
        # Replace the raw tool text with something the user can act on.
        self.args = (
            f'Save file "{save_id}" already exists on this memory card. '
            "Please delete the existing save first or use a different memory card.",
        )


class CardNotFound(MemoryCardError):
    def __init__(self, card_id: str) -> None:
        super().__init__(f"Memory card '{card_id}' not found.")
        self.card_id = card_id


class SaveNotFound(MemoryCardError):
    def __init__(self, card_id: str, save_id: str) -> None:
        super().__init__(f"Save '{save_id}' not found on memory card '{card_id}'.")
        self.card_id = card_id
        self.save_id = save_id
