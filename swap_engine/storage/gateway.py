from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from google.cloud import firestore
from redis import asyncio as redis
from redis.asyncio.client import Redis

from swap_engine.common import log_event

from .firestore_ops import FirestoreReportOps
from .redis_ops import RedisJobStore
from .settings import StorageSettings


class StorageGateway(FirestoreReportOps, RedisJobStore):
    """Redis job store plus the optional Firestore report archive.

    Both halves share one lifecycle: ``connect`` before use, ``close`` on
    shutdown or before a bootstrap retry.
    """

    def __init__(self, settings: StorageSettings, logger: logging.Logger) -> None:
        self.settings = settings
        self._logger = logger
        self._redis: Redis | None = None
        self._firestore: firestore.Client | None = None
        self._bot_doc_ref: Any | None = None
        self._batches_collection_ref: Any | None = None
        self._metrics_doc_ref: Any | None = None

    @property
    def bot_id(self) -> str:
        return self.settings.bot_id

    async def connect(self) -> None:
        await self._connect_redis()
        if self.settings.firestore_enabled:
            self._connect_firestore()

    async def _connect_redis(self) -> None:
        client = redis.from_url(self.settings.redis_url, decode_responses=True)
        await client.ping()
        self._redis = client
        log_event(
            self._logger,
            level="info",
            event="redis_connected",
            message="Connected to Redis job store",
            order_prefix=self.settings.order_prefix,
            wallet_prefix=self.settings.wallet_prefix,
        )

    def _connect_firestore(self) -> None:
        # FIREBASE_CREDENTIALS is the service-account path used by deployments.
        credentials_path = os.getenv("FIREBASE_CREDENTIALS")
        if credentials_path:
            os.environ.setdefault("GOOGLE_APPLICATION_CREDENTIALS", credentials_path)

        self._firestore = firestore.Client(project=self.settings.firestore_project_id)
        self._initialize_namespace_refs()
        log_event(
            self._logger,
            level="info",
            event="firestore_connected",
            message="Connected to Firestore report archive",
            bot_id=self.settings.bot_id,
        )

    async def healthcheck(self) -> None:
        await self._require_redis().ping()
        if self._bot_doc_ref is not None:
            await asyncio.to_thread(self._bot_doc_ref.get)

    async def close(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            await client.aclose()

        self._firestore = None
        self._bot_doc_ref = None
        self._batches_collection_ref = None
        self._metrics_doc_ref = None
