from __future__ import annotations

import logging

from pydantic import BaseModel

from market_sync.entities import EntityDefinition
from market_sync.models import ChangeOperation, ClassificationResult
from market_sync.source import SnapshotReader, SourceStore

LOGGER = logging.getLogger(__name__)


class ChangeClassifier:
    """Turns pending change-log records for one entity kind into inserts and delete keys.

    Updates are expressed as delete-then-insert. A snapshot that is gone by the
    time it is read is skipped, but its log record still counts as consumed.
    Any source read error aborts classification for the whole entity kind.
    """

    def __init__(self, *, store: SourceStore, reader: SnapshotReader | None = None) -> None:
        self._store = store
        self._reader = reader or SnapshotReader(store)

    def classify(self, definition: EntityDefinition) -> ClassificationResult:
        if definition.kind is None:
            raise ValueError(f"{definition.name} is not a change-log-driven entity")

        records = self._store.fetch_change_log(definition.kind)
        result = ClassificationResult(kind=definition.kind, records=records)

        inserts_by_ref: dict[int, BaseModel] = {}
        delete_keys: dict[int, None] = {}

        for record in records:
            if record.operation is ChangeOperation.DELETE:
                delete_keys.setdefault(record.row_ref, None)
                continue

            snapshot = self._reader.read(definition, record.row_ref)
            if snapshot is None:
                LOGGER.warning(
                    "snapshot_missing",
                    extra={
                        "entity": definition.name,
                        "log_id": record.id,
                        "row_ref": record.row_ref,
                        "operation": record.operation.name,
                    },
                )
                result.skipped_row_refs.append(record.row_ref)
                continue

            if record.operation is ChangeOperation.UPDATE:
                delete_keys.setdefault(record.row_ref, None)

            # Later records for the same row replace earlier ones; order follows first sighting.
            inserts_by_ref[record.row_ref] = snapshot

        result.inserts = list(inserts_by_ref.values())
        result.delete_keys = list(delete_keys)

        LOGGER.info(
            "classification_complete",
            extra={
                "entity": definition.name,
                "log_records": len(records),
                "inserts": len(result.inserts),
                "delete_keys": len(result.delete_keys),
                "skipped": len(result.skipped_row_refs),
            },
        )
        return result
