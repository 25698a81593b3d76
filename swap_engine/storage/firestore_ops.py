from __future__ import annotations

import asyncio
from typing import Any

from google.cloud import firestore

from swap_engine.common import guarded_call, log_event
from swap_engine.trading.types import BatchReport, ExecutionOrder

from .helpers import utc_day_id


class FirestoreReportOps:
    """Archive of batch reports under ``{bot_collection}/{bot_id}``."""

    @property
    def firestore_enabled(self) -> bool:
        return self._firestore is not None

    def _initialize_namespace_refs(self) -> None:
        firestore_client = self._require_firestore()

        bot_doc_path = f"{self.settings.bot_collection}/{self.settings.bot_id}"
        self._bot_doc_ref = firestore_client.document(bot_doc_path)
        self._batches_collection_ref = self._bot_doc_ref.collection(self.settings.bot_batches_collection)
        self._metrics_doc_ref = self._bot_doc_ref.collection(self.settings.bot_metrics_collection).document(
            self.settings.bot_metrics_doc_id
        )

    async def record_batch_report(self, order: ExecutionOrder, report: BatchReport) -> None:
        if self._firestore is None or self._batches_collection_ref is None:
            log_event(
                self._logger,
                level="debug",
                event="batch_report_archive_skipped",
                message="Skipping batch report archive because Firestore is disabled",
                order_id=order.order_id,
            )
            return

        doc_id = f"order-{order.order_id}"
        payload: dict[str, Any] = {
            "order": order.to_dict(),
            "report": report.to_dict(),
            "bot_id": self.settings.bot_id,
            "dry_run": self.settings.dry_run,
            "created_at": firestore.SERVER_TIMESTAMP,
        }
        batch_ref = self._batches_collection_ref.document(doc_id)

        async def write_report() -> bool:
            await asyncio.to_thread(batch_ref.set, payload, merge=True)
            return True

        written = await guarded_call(
            write_report,
            logger=self._logger,
            event="batch_report_persist_failed",
            message="Failed to persist batch report",
            level="error",
            default=False,
            order_id=order.order_id,
        )
        if not written:
            return

        await guarded_call(
            lambda: self._update_batch_aggregates(order=order, report=report),
            logger=self._logger,
            event="batch_aggregate_update_failed",
            message="Failed to update batch aggregates",
            level="error",
            order_id=order.order_id,
        )

    async def _update_batch_aggregates(self, *, order: ExecutionOrder, report: BatchReport) -> None:
        if self._metrics_doc_ref is None:
            return

        payload: dict[str, Any] = {
            "updated_at": firestore.SERVER_TIMESTAMP,
            "order_count": firestore.Increment(1),
            "swap_count": firestore.Increment(report.total_processed),
            "successful_swap_count": firestore.Increment(report.successful),
            "failed_swap_count": firestore.Increment(report.failed),
            "last_order_id": order.order_id,
            "last_day_id": utc_day_id(),
            "bot_id": self.settings.bot_id,
        }
        await asyncio.to_thread(self._metrics_doc_ref.set, payload, merge=True)

    def _require_firestore(self) -> firestore.Client:
        if self._firestore is None:
            raise RuntimeError("Firestore client is not initialized.")
        return self._firestore
