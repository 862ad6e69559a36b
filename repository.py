"""
Generic data access over a named MongoDB collection.

Every read returns plain dicts with the ObjectId exposed as ``id`` and every
date-like value converted to a timezone-aware UTC ``datetime``.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.timestamp import Timestamp
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from schemas import SCHEMA_VERSION

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Filter = Tuple[str, str, Any]

EARLIEST = datetime.min.replace(tzinfo=timezone.utc)
# Raw keys the adapters read to produce created_at
ORDER_FIELDS = {"created_at": 1, "createdAt": 1, "schema_version": 1}

OPERATORS = {
    "==": None,
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
    "not-in": "$nin",
    "array-contains": None,
}


def utcnow() -> datetime:
    now = datetime.now(timezone.utc)
    # BSON dates carry millisecond precision
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def as_key(doc_id: Any) -> Any:
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return ObjectId(doc_id)
    return doc_id


def to_storage(value: Any) -> Any:
    """Prepare a value for BSON: dates become datetimes, aware datetimes naive UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, dict):
        return {k: to_storage(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storage(v) for v in value]
    return value


def _is_date_key(key: str) -> bool:
    return key.endswith("_at") or key.endswith("_date") or key == "last_audit"


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_value(value: Any, key: str = "") -> Any:
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        # Firestore exports: {"seconds": .., "nanoseconds": ..} or the underscored form
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds"))
        if seconds is not None and nanos is not None and len(value) == 2:
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        return {k: normalize_value(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_value(v) for v in value]
    if isinstance(value, str) and _is_date_key(key):
        parsed = _parse_iso(value)
        return parsed if parsed is not None else value
    return value


def build_query(filters: Iterable[Filter]) -> Document:
    query: Document = {}
    for field, op, value in filters:
        if op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        if field == "id":
            field = "_id"
            value = [as_key(v) for v in value] if op in ("in", "not-in") else as_key(value)
        value = to_storage(value)
        mongo_op = OPERATORS[op]
        if mongo_op is None:
            # Equality and array-contains share Mongo's implicit match
            condition = value
        else:
            condition = {mongo_op: value}
        if field in query and isinstance(query[field], dict) and isinstance(condition, dict):
            query[field].update(condition)
        else:
            query[field] = condition
    return query


@dataclass
class Page:
    items: List[Document]
    cursor: Optional[Document]
    has_more: bool


class Repository:
    """CRUD and query primitives for one collection.

    ``adapter`` converts legacy document shapes to the canonical one and is
    applied to every document read.
    """

    schema_version = SCHEMA_VERSION

    def __init__(self, db: Database, collection_name: str, adapter: Optional[Callable[[Document], Document]] = None):
        self.db = db
        self.collection_name = collection_name
        self.adapter = adapter

    @property
    def collection(self):
        return self.db[self.collection_name]

    def normalize(self, doc: Optional[Document]) -> Optional[Document]:
        if doc is None:
            return None
        doc = dict(doc)
        if "_id" in doc:
            doc["id"] = str(doc.pop("_id"))
        if self.adapter is not None:
            doc = self.adapter(doc)
        return {k: normalize_value(v, k) for k, v in doc.items()}

    def _many(self, cursor) -> List[Document]:
        return [self.normalize(doc) for doc in cursor]

    # ---------- Reads ----------

    def get_all(self) -> List[Document]:
        return self._many(self.collection.find({}))

    def get_by_id(self, doc_id: str) -> Optional[Document]:
        if not doc_id:
            return None
        return self.normalize(self.collection.find_one({"_id": as_key(doc_id)}))

    def query_by_field(self, field: str, value: Any) -> List[Document]:
        return self.query_multiple([(field, "==", value)])

    def query_multiple(self, filters: Sequence[Filter]) -> List[Document]:
        return self._many(self.collection.find(build_query(filters)))

    def query_with_order(self, field: str, direction: str = "desc", limit: Optional[int] = None,
                         filters: Sequence[Filter] = ()) -> List[Document]:
        order = DESCENDING if direction == "desc" else ASCENDING
        cursor = self.collection.find(build_query(filters)).sort(field, order)
        if limit:
            cursor = cursor.limit(limit)
        return self._many(cursor)

    def _order_key(self, doc: Document) -> Tuple[datetime, str]:
        created = doc.get("created_at")
        if not isinstance(created, datetime):
            created = EARLIEST
        return created, doc["id"]

    def paginate(self, page_size: int, cursor: Union[Document, str, None] = None) -> Page:
        """Return one page ordered by creation time, newest first.

        ``cursor`` is the last document of the previous page, or its id.
        Ordering is computed on the adapted ``created_at`` so legacy documents,
        whose stored key is ``createdAt`` or a Firestore timestamp, take their
        place in the sequence. Documents without a creation time come last.
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        keys = sorted(
            (self._order_key(self.normalize(doc)) for doc in self.collection.find({}, ORDER_FIELDS)),
            reverse=True,
        )
        if cursor is not None:
            last = self.get_by_id(cursor) if isinstance(cursor, str) else cursor
            if last is None:
                return Page(items=[], cursor=None, has_more=False)
            # Ties on created_at are broken by id so no document is skipped or repeated
            last_key = self._order_key(last)
            keys = [key for key in keys if key < last_key]

        page_ids = [doc_id for _, doc_id in keys[:page_size]]
        found = {doc["id"]: doc for doc in self._many(
            self.collection.find({"_id": {"$in": [as_key(doc_id) for doc_id in page_ids]}})
        )}
        docs = [found[doc_id] for doc_id in page_ids if doc_id in found]
        return Page(
            items=docs,
            cursor=docs[-1] if docs else None,
            has_more=len(docs) == page_size,
        )

    def count(self) -> int:
        return len(self.get_all())

    def count_by_field(self, field: str, value: Any) -> int:
        return len(self.query_by_field(field, value))

    # ---------- Writes ----------

    def create(self, data: Document) -> str:
        doc = {k: v for k, v in data.items() if k not in ("id", "_id")}
        now = utcnow()
        doc.update({
            "schema_version": self.schema_version,
            "created_at": now,
            "updated_at": now,
        })
        result = self.collection.insert_one(to_storage(doc))
        logger.debug(f"Created {self.collection_name}/{result.inserted_id}")
        return str(result.inserted_id)

    def update(self, doc_id: str, data: Document) -> int:
        changes = {k: v for k, v in data.items() if k not in ("id", "_id", "created_at")}
        changes["updated_at"] = utcnow()
        result = self.collection.update_one({"_id": as_key(doc_id)}, {"$set": to_storage(changes)})
        return result.matched_count

    def delete(self, doc_id: str) -> int:
        result = self.collection.delete_one({"_id": as_key(doc_id)})
        return result.deleted_count

    def find_one_and_update(self, doc_id: str, expected: Document, changes: Document,
                            unset: Sequence[str] = ()) -> Optional[Document]:
        """Apply ``changes`` only if the document still matches ``expected``.

        Returns the updated document, or None when nothing matched.
        """
        update: Document = {"$set": to_storage({**changes, "updated_at": utcnow()})}
        if unset:
            update["$unset"] = {field: "" for field in unset}
        query = {"_id": as_key(doc_id), **to_storage(expected)}
        doc = self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return self.normalize(doc)

    def increment(self, doc_id: str, field: str, amount: int = 1, floor: Optional[int] = None) -> bool:
        query: Document = {"_id": as_key(doc_id)}
        if floor is not None and amount < 0:
            query[field] = {"$gte": floor - amount}
        result = self.collection.update_one(query, {"$inc": {field: amount}, "$set": {"updated_at": to_storage(utcnow())}})
        return result.modified_count > 0

    def push(self, doc_id: str, field: str, value: Any) -> bool:
        result = self.collection.update_one(
            {"_id": as_key(doc_id)},
            {"$push": {field: to_storage(value)}, "$set": {"updated_at": to_storage(utcnow())}},
        )
        return result.matched_count > 0

    # ---------- Batches (sequential, not atomic) ----------

    def create_batch(self, items: Iterable[Document]) -> List[str]:
        return [self.create(item) for item in items]

    def update_batch(self, updates: Iterable[Tuple[str, Document]]) -> int:
        return sum(self.update(doc_id, data) for doc_id, data in updates)

    def delete_batch(self, ids: Iterable[str]) -> int:
        return sum(self.delete(doc_id) for doc_id in ids)
