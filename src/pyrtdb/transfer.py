"""Whole-document export and import.

Export is a pure serialization of the local mirror. Import replaces the
entire remote document with one root write, so it either lands completely
or not at all.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from pyrtdb._constants import EXPORT_FILENAME_PREFIX
from pyrtdb.commands import SetValue, parse_json_text
from pyrtdb.document import ROOT, JsonValue
from pyrtdb.exceptions import DocumentInputError
from pyrtdb.sync import SyncController

_logger = logging.getLogger(__name__)

IMPORT_CONFIRM_PROMPT = "Replace the entire database with the imported document?"


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    text: str


def export_filename(now_ms: int | None = None) -> str:
    """``export-<epoch milliseconds>.json``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{EXPORT_FILENAME_PREFIX}{now_ms}.json"


def export_document(document: JsonValue, *, now_ms: int | None = None) -> ExportArtifact:
    """Serialize *document* as indented JSON."""
    return ExportArtifact(
        filename=export_filename(now_ms),
        text=json.dumps(document, indent=2, ensure_ascii=False),
    )


def write_export(controller: SyncController, directory: str | Path = ".", *, now_ms: int | None = None) -> Path:
    """Write the controller's current mirror to *directory* and return the file path."""
    if not controller.loaded:
        raise DocumentInputError("Nothing to export: the document has not been loaded yet")
    artifact = export_document(controller.mirror, now_ms=now_ms)
    target = Path(directory) / artifact.filename
    target.write_text(artifact.text, encoding="utf-8")
    _logger.info("Exported document to %s", target)
    controller.banner.success(f"Exported database to {artifact.filename}")
    return target


def parse_import(text: str) -> JsonValue:
    """Parse an uploaded document; invalid JSON raises :class:`DocumentInputError`."""
    try:
        return parse_json_text(text)
    except DocumentInputError as exc:
        raise DocumentInputError(f"Import failed: {exc}") from exc


async def import_document(
    controller: SyncController,
    text: str,
    *,
    confirm: Callable[[str], bool],
) -> bool:
    """Replace the whole remote document with the parsed *text*.

    Returns ``False`` when the user declines or the write fails.
    """
    document = parse_import(text)
    if not confirm(IMPORT_CONFIRM_PROMPT):
        _logger.debug("Import declined")
        return False
    return await controller.dispatch(SetValue(path=ROOT, value=document))


async def import_file(
    controller: SyncController,
    path: str | Path,
    *,
    confirm: Callable[[str], bool],
) -> bool:
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DocumentInputError(f"Cannot read {source}: {exc}") from exc
    return await import_document(controller, text, confirm=confirm)
