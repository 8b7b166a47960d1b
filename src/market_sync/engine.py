from __future__ import annotations

import logging
from collections.abc import Sequence

from market_sync.applier import RemoteBatchApplier
from market_sync.classifier import ChangeClassifier
from market_sync.entities import RECONCILED_ENTITIES, EntityDefinition, definition_for
from market_sync.errors import BatchAbortedError
from market_sync.gateway import CommandGateway
from market_sync.models import (
    ApplyResult,
    ClassificationResult,
    EntityKind,
    EntitySyncReport,
    FailurePolicy,
    PruneResult,
    ReconcileReport,
)
from market_sync.pruner import LogPruner
from market_sync.reconciler import FullSnapshotReconciler
from market_sync.settings import Settings, known_entity_names
from market_sync.source import SnapshotReader, SourceStore

LOGGER = logging.getLogger(__name__)


class SyncEngine:
    """Runs one entity at a time: ensure table, classify, apply, prune.

    Entities without change-log coverage are brought in line by a full
    reconciliation pass instead. A failure in one entity is logged and the
    cycle moves on unless ``halt_on_error`` is set.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        store: SourceStore,
        gateway: CommandGateway,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        reader = SnapshotReader(store)
        self._classifier = ChangeClassifier(store=store, reader=reader)
        self._applier = RemoteBatchApplier(
            gateway=gateway,
            chunk_delay_ms=settings.chunk_delay_ms,
        )
        self._pruner = LogPruner(
            store=store,
            chunk_size=settings.prune_chunk_size,
            chunk_delay_ms=settings.chunk_delay_ms,
        )
        self._reconciler = FullSnapshotReconciler(
            gateway=gateway,
            reader=reader,
            page_size=settings.reconcile_page_size,
            epsilon=settings.reconcile_epsilon,
        )
        self._ensured_tables: set[str] = set()

        if settings.prune_mode == "eager":
            LOGGER.warning(
                "eager_pruning_enabled",
                extra={"detail": "change-log ids are pruned before the remote apply"},
            )
        for name, config in settings.entities.items():
            if (
                config.failure_policy is FailurePolicy.ABORT_ON_FIRST_FAILURE
                and config.max_attempts > 1
            ):
                LOGGER.warning(
                    "strict_policy_with_retries",
                    extra={"entity": name, "max_attempts": config.max_attempts},
                )

    def run_cycle(
        self,
        entities: Sequence[str] | None = None,
        *,
        reconcile: bool = True,
    ) -> list[EntitySyncReport | ReconcileReport]:
        names = [_normalize(name) for name in entities] if entities else list(known_entity_names())
        LOGGER.info("cycle_start", extra={"entities": names, "reconcile": reconcile})

        reports: list[EntitySyncReport | ReconcileReport] = []
        for name in names:
            if name in RECONCILED_ENTITIES:
                if reconcile:
                    reports.append(self.reconcile_entity(name))
                continue
            reports.append(self.sync_entity(EntityKind.from_name(name)))

        LOGGER.info(
            "cycle_complete",
            extra={
                "entities": len(reports),
                "failed": sum(1 for report in reports if report.error),
            },
        )
        return reports

    def sync_entity(self, kind: EntityKind) -> EntitySyncReport:
        definition = definition_for(kind)
        config = self._settings.entity_config(definition.name)
        report = EntitySyncReport(kind=kind)
        if not config.enabled:
            LOGGER.info("entity_disabled", extra={"entity": definition.name})
            return report

        try:
            self.ensure_remote_table(definition)
            classification = self._classifier.classify(definition)
            report.consumed = len(classification.records)
            report.skipped = len(classification.skipped_row_refs)
            if classification.is_empty:
                return report

            if self._settings.prune_mode == "eager":
                report.prune = self._pruner.prune(classification.consumed_log_ids)

            aborted: BatchAbortedError | None = None
            try:
                report.apply = self._applier.apply(
                    definition,
                    config,
                    inserts=[record.remote_row() for record in classification.inserts],
                    delete_keys=classification.delete_keys,
                )
            except BatchAbortedError as exc:
                aborted = exc
                report.apply = _partial_result(exc)

            if self._settings.prune_mode == "confirmed":
                report.prune = self._prune_confirmed(definition, classification, report.apply)

            if aborted is not None:
                raise aborted
        except Exception as exc:
            report.error = str(exc)
            LOGGER.exception("entity_sync_failed", extra={"entity": definition.name})
            if self._settings.halt_on_error:
                raise
            return report

        LOGGER.info(
            "entity_sync_complete",
            extra={
                "entity": definition.name,
                "consumed": report.consumed,
                "skipped": report.skipped,
                "deleted": report.apply.deleted_rows,
                "inserted": report.apply.inserted_rows,
                "failed_rows": report.apply.failed_rows,
                "pruned": report.prune.pruned,
            },
        )
        return report

    def reconcile_entity(self, name: str) -> ReconcileReport:
        definition = RECONCILED_ENTITIES[_normalize(name)]
        config = self._settings.entity_config(definition.name)
        report = ReconcileReport(table=definition.remote_table)
        if not config.enabled:
            LOGGER.info("entity_disabled", extra={"entity": definition.name})
            return report

        try:
            self.ensure_remote_table(definition)
            diff = self._reconciler.reconcile(definition)
            report.inserts = len(diff.inserts)
            report.updates = len(diff.updates)
            report.deletes = len(diff.deletes)
            if diff.is_empty:
                return report

            try:
                report.apply = self._applier.apply(
                    definition,
                    config,
                    inserts=diff.inserts + diff.updates,
                    delete_keys=diff.deletes,
                )
            except BatchAbortedError as exc:
                report.apply = _partial_result(exc)
                raise
        except Exception as exc:
            report.error = str(exc)
            LOGGER.exception("entity_sync_failed", extra={"entity": definition.name})
            if self._settings.halt_on_error:
                raise
        return report

    def ensure_remote_table(self, definition: EntityDefinition) -> None:
        if definition.remote_table in self._ensured_tables:
            return

        self._gateway.execute_command(definition.remote_ddl)
        self._ensured_tables.add(definition.remote_table)
        LOGGER.info("remote_table_ready", extra={"table": definition.remote_table})

    def _prune_confirmed(
        self,
        definition: EntityDefinition,
        classification: ClassificationResult,
        applied: ApplyResult,
    ) -> PruneResult:
        failed = set(applied.failed_keys)
        ids = [record.id for record in classification.records if record.row_ref not in failed]
        held_back = len(classification.records) - len(ids)
        if held_back:
            LOGGER.warning(
                "prune_held_back",
                extra={"entity": definition.name, "log_ids": held_back},
            )
        return self._pruner.prune(ids)


def _partial_result(exc: BatchAbortedError) -> ApplyResult:
    if isinstance(exc.result, ApplyResult):
        return exc.result
    return ApplyResult(aborted=True)


def _normalize(name: str) -> str:
    return name.strip().lower().replace("-", "_")
