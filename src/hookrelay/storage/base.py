"""Qdrant plumbing shared by the endpoint and attempt mixins."""

from __future__ import annotations

import asyncio
import hashlib
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from hookrelay.config import settings
from hookrelay.exceptions import ConfigurationError, StorageError

from .retry import is_transient_storage_error

ModelT = TypeVar("ModelT", bound=BaseModel)

# Logical tables, keyed by the name the mixins use
COLLECTION_NAMES = {
    "endpoints": "webhook_endpoints",
    "attempts": "webhook_delivery_attempts",
}

# Payload fields indexed for filtering, per collection
INDEXED_FIELDS: dict[str, dict[str, models.PayloadSchemaType]] = {
    "endpoints": {
        "active": models.PayloadSchemaType.BOOL,
        "user_id": models.PayloadSchemaType.KEYWORD,
        "organization_id": models.PayloadSchemaType.KEYWORD,
    },
    "attempts": {
        "endpoint_id": models.PayloadSchemaType.KEYWORD,
        "delivery_id": models.PayloadSchemaType.KEYWORD,
        "status": models.PayloadSchemaType.KEYWORD,
        "scheduled_at_ts": models.PayloadSchemaType.FLOAT,
        "sent_at_ts": models.PayloadSchemaType.FLOAT,
        "completed_at_ts": models.PayloadSchemaType.FLOAT,
    },
}

# Datetime fields mirrored as epoch seconds so range filters work
TIMESTAMP_FIELDS = ("scheduled_at", "sent_at", "completed_at", "created_at")

# Records are fetched by key or payload filter; the vector is a constant
PLACEHOLDER_VECTOR = [1.0]


class StorageBase:
    """Base class for webhook storage.

    Provides:
    - Client creation (server or local ":memory:" mode) and shutdown
    - Collection creation and payload indexing
    - Deterministic point IDs from record IDs
    - Model <-> payload conversion with timestamp mirrors
    - Per-row locks serializing writes to the same record
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize storage.

        Args:
            url: Qdrant server URL, or ":memory:" for local mode.
                Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            client: Pre-built client (tests pass a local-mode client).
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client: AsyncQdrantClient | None = client
        self._collections_initialized = False
        self._row_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def client(self) -> AsyncQdrantClient:
        """The live client. Raises StorageError before initialize()."""
        if self._client is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Create the client if needed and ensure collections exist."""
        if self._client is None:
            if not self._url:
                raise ConfigurationError("qdrant_url is not set")
            if self._url == ":memory:":
                self._client = AsyncQdrantClient(location=":memory:")
            else:
                self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        try:
            await self._ensure_collections()
        except Exception as e:
            if not is_transient_storage_error(e):
                raise
            raise StorageError(f"Qdrant unavailable at {self._url}: {e}") from e
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the client. initialize() may be called again afterwards."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        """Prefixed collection name for a logical table."""
        return f"{self._prefix}_{COLLECTION_NAMES[kind]}"

    @staticmethod
    def _point_id(record_id: str) -> str:
        """Convert a record ID to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the record ID to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(record_id.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure both collections exist with their payload indexes."""
        existing = {c.name for c in (await self.client.get_collections()).collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            for field_name, schema in INDEXED_FIELDS[kind].items():
                await self.client.create_payload_index(
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )

    @asynccontextmanager
    async def _row_lock(self, record_id: str) -> AsyncIterator[None]:
        """Serialize writes to a single record within this process.

        A lock lives only while some task holds or waits on it, so the map
        stays as small as the number of rows being written concurrently.
        """
        lock = self._row_locks.get(record_id)
        if lock is None:
            lock = asyncio.Lock()
            self._row_locks[record_id] = lock
        async with lock:
            yield

    def _model_to_payload(self, model: BaseModel) -> dict[str, Any]:
        """Convert a model to a Qdrant payload.

        Secrets are stored in plaintext (storage is trusted); datetimes are
        mirrored as ``<field>_ts`` epoch seconds for range filters.
        """
        data = model.model_dump(mode="json", context={"reveal_secrets": True})
        for field_name in TIMESTAMP_FIELDS:
            value = getattr(model, field_name, None)
            if field_name in data:
                data[f"{field_name}_ts"] = (
                    value.timestamp() if isinstance(value, datetime) else None
                )
        return data

    def _payload_to_model(self, payload: dict[str, Any], model_class: type[ModelT]) -> ModelT:
        """Convert a Qdrant payload back to a model."""
        mirrored = {f"{field_name}_ts" for field_name in TIMESTAMP_FIELDS}
        data = {k: v for k, v in payload.items() if k not in mirrored}
        return model_class.model_validate(data)

    def _point(self, record_id: str, model: BaseModel) -> models.PointStruct:
        return models.PointStruct(
            id=self._point_id(record_id),
            vector=PLACEHOLDER_VECTOR,
            payload=self._model_to_payload(model),
        )

    async def _scroll_all(
        self,
        kind: str,
        scroll_filter: models.Filter | None,
        max_records: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect payloads of every point matching a filter."""
        payloads: list[dict[str, Any]] = []
        offset: Any = None
        page_size = 256

        while True:
            points, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=scroll_filter,
                limit=page_size,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            payloads.extend(p.payload for p in points if p.payload is not None)
            if offset is None or (max_records is not None and len(payloads) >= max_records):
                break

        return payloads if max_records is None else payloads[:max_records]
