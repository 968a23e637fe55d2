"""Firestore client wrapper for analytics, conversation and tenant records."""

import logging
from datetime import datetime
from typing import Any, Callable, Iterator

from google.api_core import exceptions
from google.cloud import firestore

from src.config import get_settings
from src.core.exceptions import DatastoreError
from src.utils.dates import utcnow
from src.utils.text import message_matches

logger = logging.getLogger(__name__)

# Firestore caps "in" filters at 30 values
IN_QUERY_CHUNK = 30

Bound = tuple[str, str, Any]
MergeFn = Callable[[dict[str, Any] | None], dict[str, Any]]


@firestore.transactional
def _merge_in_transaction(transaction, ref, merge: MergeFn) -> dict[str, Any]:
    """Read a document, merge it and write it back inside one transaction."""
    snapshot = ref.get(transaction=transaction)
    current = snapshot.to_dict() if snapshot.exists else None
    data = merge(current)
    transaction.set(ref, data)
    return data


def _chunks(values: list[str], size: int = IN_QUERY_CHUNK) -> Iterator[list[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


class FirestoreClient:
    """Wrapper for Firestore operations."""

    _instance: "FirestoreClient | None" = None
    _db: firestore.Client | None = None

    def __new__(cls) -> "FirestoreClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def db(self) -> firestore.Client:
        """Get or create Firestore client."""
        if self._db is None:
            settings = get_settings()
            # Use project from settings if provided, otherwise auto-detect
            project = settings.google_cloud_project if settings.google_cloud_project else None
            self._db = firestore.Client(project=project)
        return self._db

    def _run_merge(self, ref, merge: MergeFn, attempts: int) -> dict[str, Any]:
        transaction = self.db.transaction(max_attempts=attempts)
        try:
            return _merge_in_transaction(transaction, ref, merge)
        except exceptions.Conflict as e:
            raise DatastoreError(f"Write conflict on {ref.path}") from e
        except ValueError as e:
            # Raised by the client once every attempt has been aborted
            if isinstance(e.__cause__, exceptions.GoogleAPICallError):
                raise DatastoreError(f"Gave up writing {ref.path} after {attempts} attempts") from e
            raise

    # Tenant lookups
    async def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        """Get customer by ID."""
        doc = self.db.collection("customers").document(customer_id).get()
        return doc.to_dict() if doc.exists else None

    async def get_api_key_by_hash(self, key_hash: str) -> dict[str, Any] | None:
        """Find API key by hash (for authentication)."""
        docs = (
            self.db.collection("api_keys")
            .where("key_hash", "==", key_hash)
            .limit(1)
            .stream()
        )
        for doc in docs:
            return doc.to_dict()
        return None

    async def get_chatbot(self, chatbot_id: str) -> dict[str, Any] | None:
        """Get chatbot by ID."""
        doc = self.db.collection("chatbots").document(chatbot_id).get()
        return doc.to_dict() if doc.exists else None

    async def list_chatbots_for_customer(self, customer_id: str) -> list[dict[str, Any]]:
        """List all chatbots owned by a customer."""
        docs = (
            self.db.collection("chatbots")
            .where("customer_id", "==", customer_id)
            .stream()
        )
        return [doc.to_dict() for doc in docs]

    # Performance samples
    async def create_performance_sample(self, sample_data: dict[str, Any]) -> dict[str, Any]:
        """Store one per-reply performance sample."""
        ref = self.db.collection("performance_metrics").document()
        sample_data = {
            **sample_data,
            "id": ref.id,
            "timestamp": sample_data.get("timestamp") or utcnow(),
            "created_at": utcnow(),
        }
        ref.set(sample_data)
        return sample_data

    def stream_performance_samples(
        self,
        chatbot_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Stream samples of a chatbot within [start, end), oldest first."""
        query = self.db.collection("performance_metrics").where("chatbot_id", "==", chatbot_id)
        if start:
            query = query.where("timestamp", ">=", start)
        if end:
            query = query.where("timestamp", "<", end)
        query = query.order_by("timestamp")

        for doc in query.stream():
            yield doc.to_dict()

    async def delete_performance_samples_before(
        self, cutoff: datetime, batch_size: int = 200
    ) -> int:
        """Delete samples older than cutoff in batches; returns the count."""
        deleted = 0
        while True:
            docs = list(
                self.db.collection("performance_metrics")
                .where("timestamp", "<", cutoff)
                .limit(batch_size)
                .stream()
            )
            if not docs:
                return deleted

            batch = self.db.batch()
            for doc in docs:
                batch.delete(doc.reference)
            batch.commit()
            deleted += len(docs)

    # Conversation metrics (one document per conversation)
    async def get_conversation_metrics(self, conversation_id: str) -> dict[str, Any] | None:
        doc = self.db.collection("conversation_metrics").document(conversation_id).get()
        return doc.to_dict() if doc.exists else None

    async def upsert_conversation_metrics(
        self,
        conversation_id: str,
        chatbot_id: str,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        """Create or update the metrics of a conversation with the supplied fields."""
        ref = self.db.collection("conversation_metrics").document(conversation_id)
        now = utcnow()

        def merge(current: dict[str, Any] | None) -> dict[str, Any]:
            base = current or {
                "conversation_id": conversation_id,
                "chatbot_id": chatbot_id,
                "message_count": 0,
                "sentiment_analysis": [],
                "topics_discussed": [],
                "created_at": now,
            }
            return {**base, **fields, "updated_at": now}

        return self._run_merge(ref, merge, attempts=get_settings().snapshot_write_attempts)

    async def list_conversation_metrics(
        self,
        chatbot_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """List metrics records created within [start, end)."""
        query = self.db.collection("conversation_metrics").where("chatbot_id", "==", chatbot_id)
        if start:
            query = query.where("created_at", ">=", start)
        if end:
            query = query.where("created_at", "<", end)
        docs = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit).stream()
        return [doc.to_dict() for doc in docs]

    async def get_metrics_for_conversations(
        self, conversation_ids: list[str]
    ) -> list[dict[str, Any]]:
        """Fetch metrics records for a set of conversations."""
        results = []
        for chunk in _chunks(conversation_ids):
            docs = (
                self.db.collection("conversation_metrics")
                .where("conversation_id", "in", chunk)
                .stream()
            )
            results.extend(doc.to_dict() for doc in docs)
        return results

    # Daily analytics snapshots, keyed "{chatbot_id}_{YYYY-MM-DD}"
    async def get_daily_snapshot(self, snapshot_id: str) -> dict[str, Any] | None:
        doc = self.db.collection("analytics").document(snapshot_id).get()
        return doc.to_dict() if doc.exists else None

    async def upsert_daily_snapshot(
        self, snapshot_id: str, merge: MergeFn, attempts: int = 2
    ) -> dict[str, Any]:
        """Atomically merge into the snapshot stored under its composite key."""
        ref = self.db.collection("analytics").document(snapshot_id)
        return self._run_merge(ref, merge, attempts)

    async def set_daily_snapshot(self, snapshot_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Replace a snapshot with freshly computed values."""
        self.db.collection("analytics").document(snapshot_id).set(data)
        return data

    async def list_daily_snapshots(
        self, chatbot_id: str, start_day: str, end_day: str
    ) -> list[dict[str, Any]]:
        """List snapshots between two YYYY-MM-DD keys (inclusive), oldest first."""
        docs = (
            self.db.collection("analytics")
            .where("chatbot_id", "==", chatbot_id)
            .where("date", ">=", start_day)
            .where("date", "<=", end_day)
            .order_by("date")
            .stream()
        )
        return [doc.to_dict() for doc in docs]

    # Conversations
    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        doc = self.db.collection("conversations").document(conversation_id).get()
        return doc.to_dict() if doc.exists else None

    def _conversation_query(self, chatbot_id: str, bounds: list[Bound]):
        query = self.db.collection("conversations").where("chatbot_id", "==", chatbot_id)
        for field, op, value in bounds:
            query = query.where(field, op, value)
        return query

    async def list_conversations(
        self,
        chatbot_id: str,
        bounds: list[Bound],
        order_by: str = "started_at",
        direction: str = "desc",
        offset: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List conversations matching bounds, sorted and paged by Firestore."""
        query = self._conversation_query(chatbot_id, bounds)
        query = query.order_by(
            order_by,
            direction=firestore.Query.ASCENDING if direction == "asc" else firestore.Query.DESCENDING,
        )
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [doc.to_dict() for doc in query.stream()]

    async def count_conversations(self, chatbot_id: str, bounds: list[Bound]) -> int:
        """Count conversations matching bounds with an aggregation query."""
        query = self._conversation_query(chatbot_id, bounds)
        results = query.count(alias="total").get()
        return int(results[0][0].value) if results else 0

    async def get_messages(
        self, conversation_id: str, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Get messages of a conversation in chronological order."""
        conv_ref = self.db.collection("conversations").document(conversation_id)
        query = conv_ref.collection("messages").order_by("created_at")
        if limit is not None:
            query = query.limit(limit)
        return [msg.to_dict() for msg in query.stream()]

    async def find_conversations_with_text(
        self, conversation_ids: list[str], text: str
    ) -> set[str]:
        """Return the conversations having a message containing text (case-insensitive)."""
        matches = set()
        for conversation_id in conversation_ids:
            messages = await self.get_messages(conversation_id)
            if any(message_matches(text, msg.get("content")) for msg in messages):
                matches.add(conversation_id)
        return matches


def get_firestore_client() -> FirestoreClient:
    """Get Firestore client instance (dependency injection)."""
    return FirestoreClient()
