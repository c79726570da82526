"""Versioned JSON blobs for board rows and board snapshots.

Rows are stored as ``{"version": 1, "rows": [...]}``. Reading is lenient:
absent, malformed or unknown-version row payloads come back as an empty row
sequence and a warning is logged. Batch start rejects boards without rows,
so an empty read can only surface for data stored outside this service.
"""

import json
import logging

from pydantic import ValidationError

from bingosim.models.board import SNAPSHOT_VERSION, BoardSnapshot, RowSnapshot
from bingosim.models.faults import SnapshotUnreadableError

logger = logging.getLogger(__name__)

ROWS_BLOB_VERSION = 1


def dump_rows(rows: tuple[RowSnapshot, ...] | list[RowSnapshot]) -> str:
    return json.dumps({
        "version": ROWS_BLOB_VERSION,
        "rows": [row.model_dump(mode="json") for row in rows],
    })


def _rows_from_document(document: object) -> tuple[RowSnapshot, ...]:
    if not isinstance(document, dict):
        logger.warning("Board rows payload is not an object; treating as empty")
        return ()
    version = document.get("version")
    if version != ROWS_BLOB_VERSION:
        logger.warning("Unsupported board rows version %r; treating as empty", version)
        return ()
    raw_rows = document.get("rows")
    if not isinstance(raw_rows, list):
        logger.warning("Board rows payload has no row list; treating as empty")
        return ()
    try:
        return tuple(RowSnapshot.model_validate(raw) for raw in raw_rows)
    except ValidationError as exc:
        logger.warning("Malformed board rows payload (%s); treating as empty", exc)
        return ()


def load_rows(payload: str | bytes | None) -> tuple[RowSnapshot, ...]:
    """Deserialize a rows blob. Never raises."""
    if not payload:
        return ()
    try:
        document = json.loads(payload)
    except ValueError as exc:
        logger.warning("Board rows payload is not JSON (%s); treating as empty", exc)
        return ()
    return _rows_from_document(document)


def dump_snapshot(snapshot: BoardSnapshot) -> str:
    document = snapshot.model_dump(mode="json", exclude={"rows"})
    document["rows"] = json.loads(dump_rows(snapshot.rows))
    return json.dumps(document)


def load_snapshot(payload: str | bytes | None) -> BoardSnapshot:
    """Deserialize a snapshot blob.

    The row section is read leniently; the envelope (event, teams, budgets)
    must be valid.

    Raises:
        SnapshotUnreadableError: The envelope is missing or invalid.
    """
    if not payload:
        msg = "Snapshot payload is empty"
        raise SnapshotUnreadableError(msg)
    try:
        document = json.loads(payload)
    except ValueError as exc:
        msg = f"Snapshot payload is not JSON: {exc}"
        raise SnapshotUnreadableError(msg) from exc
    if not isinstance(document, dict):
        msg = "Snapshot payload is not an object"
        raise SnapshotUnreadableError(msg)
    if document.get("version", SNAPSHOT_VERSION) != SNAPSHOT_VERSION:
        msg = f"Unsupported snapshot version {document.get('version')!r}"
        raise SnapshotUnreadableError(msg)

    rows = _rows_from_document(document.pop("rows", None))
    try:
        return BoardSnapshot.model_validate({**document, "rows": rows})
    except ValidationError as exc:
        msg = f"Snapshot payload is invalid: {exc}"
        raise SnapshotUnreadableError(msg) from exc
