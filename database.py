"""
Document store access.

`DocumentStore` is the contract the rest of the backend talks to. Documents go
in and come out as plain dicts whose primary key is a string under "id"
(Mongo's `_id` never leaves this module). Filters use Mongo operators, with
"id" standing for the primary key.

Nothing here is atomic across documents: callers that touch several records
must be written as sequences of idempotent steps.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, ExecutionTimeout, WTimeoutError

from app_logging import get_logger
from config import settings
from errors import ConflictError, TransientStoreError
from schemas import COMMENT, POST, REACTION, USER

logger = get_logger(__name__)

Sort = Sequence[Tuple[str, int]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore(ABC):

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Return one document or None."""

    @abstractmethod
    def find(
        self,
        collection: str,
        filter_dict: Optional[dict] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
        projection: Optional[Dict[str, int]] = None,
    ) -> List[dict]:
        ...

    @abstractmethod
    def create(self, collection: str, data: Union[BaseModel, dict]) -> str:
        """Insert a document and return its id. Raises ConflictError on a unique index clash."""

    @abstractmethod
    def update_by_id(self, collection: str, doc_id: str, patch: dict) -> Optional[dict]:
        """Apply `patch` with $set semantics and return the updated document, or None."""

    @abstractmethod
    def delete_by_id(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def delete_many(self, collection: str, filter_dict: dict) -> int:
        ...

    @abstractmethod
    def count(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        ...

    @abstractmethod
    def aggregate_group_by(self, collection: str, filter_dict: dict, field: str) -> Dict[Any, int]:
        """Count documents matching `filter_dict` grouped by the value of `field`."""


# Utility to convert Mongo documents to dicts keyed by a string "id"

def to_public(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    _id = d.pop("_id", None)
    if _id is not None:
        d["id"] = str(_id)
    return d


def _object_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        # Unparseable ids stay as strings and simply match nothing.
        return value


def _translate_id_clause(clause: Any) -> Any:
    if isinstance(clause, dict):
        out = {}
        for op, operand in clause.items():
            if op in ("$in", "$nin"):
                out[op] = [_object_id(v) for v in operand]
            else:
                out[op] = _object_id(operand)
        return out
    return _object_id(clause)


def translate_filter(filter_dict: Optional[dict]) -> dict:
    if not filter_dict:
        return {}
    translated = {}
    for key, value in filter_dict.items():
        if key == "id":
            translated["_id"] = _translate_id_clause(value)
        elif key in ("$or", "$and"):
            translated[key] = [translate_filter(f) for f in value]
        else:
            translated[key] = value
    return translated


@contextmanager
def _store_errors(operation: str, collection: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise ConflictError(f"Duplicate value in {collection}") from e
    except (ConnectionFailure, ExecutionTimeout, WTimeoutError) as e:
        logger.error("Store %s on %s failed: %s", operation, collection, e)
        raise TransientStoreError() from e


class MongoStore(DocumentStore):
    def __init__(self, db):
        self.db = db

    def ensure_indexes(self) -> None:
        with _store_errors("ensure_indexes", "*"):
            self.db[USER].create_index("username", unique=True)
            self.db[USER].create_index("email", unique=True)
            self.db[REACTION].create_index(
                [("post_id", ASCENDING), ("user_id", ASCENDING)], unique=True
            )
            self.db[REACTION].create_index("user_id")
            self.db[COMMENT].create_index("post_id")
            self.db[COMMENT].create_index("author_id")
            self.db[POST].create_index("author_id")
        logger.info("Indexes ensured on %s", self.db.name)

    def get(self, collection, doc_id):
        with _store_errors("get", collection):
            return to_public(self.db[collection].find_one({"_id": _object_id(doc_id)}))

    def find(self, collection, filter_dict=None, sort=None, limit=None, projection=None):
        with _store_errors("find", collection):
            cursor = self.db[collection].find(translate_filter(filter_dict), projection)
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return [to_public(d) for d in cursor]

    def create(self, collection, data):
        if isinstance(data, BaseModel):
            data_dict = data.model_dump(mode="json")
        else:
            data_dict = data.copy()
        data_dict.pop("id", None)
        now = utcnow()
        data_dict["created_at"] = now
        data_dict["updated_at"] = now
        with _store_errors("create", collection):
            result = self.db[collection].insert_one(data_dict)
        return str(result.inserted_id)

    def update_by_id(self, collection, doc_id, patch):
        patch = {k: v for k, v in patch.items() if k not in ("id", "_id")}
        patch["updated_at"] = utcnow()
        with _store_errors("update", collection):
            doc = self.db[collection].find_one_and_update(
                {"_id": _object_id(doc_id)},
                {"$set": patch},
                return_document=ReturnDocument.AFTER,
            )
        return to_public(doc)

    def delete_by_id(self, collection, doc_id):
        with _store_errors("delete", collection):
            result = self.db[collection].delete_one({"_id": _object_id(doc_id)})
        return result.deleted_count > 0

    def delete_many(self, collection, filter_dict):
        with _store_errors("delete_many", collection):
            result = self.db[collection].delete_many(translate_filter(filter_dict))
        return result.deleted_count

    def count(self, collection, filter_dict=None):
        with _store_errors("count", collection):
            return self.db[collection].count_documents(translate_filter(filter_dict))

    def aggregate_group_by(self, collection, filter_dict, field):
        pipeline = [
            {"$match": translate_filter(filter_dict)},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        ]
        with _store_errors("aggregate", collection):
            return {row["_id"]: row["count"] for row in self.db[collection].aggregate(pipeline)}


def connect(url: str, name: str):
    if not url:
        logger.warning("DATABASE_URL is not set; database unavailable")
        return None
    client = MongoClient(
        url,
        serverSelectionTimeoutMS=settings.STORE_TIMEOUT_MS,
        connectTimeoutMS=settings.STORE_TIMEOUT_MS,
        socketTimeoutMS=settings.STORE_TIMEOUT_MS,
        tz_aware=True,
    )
    return client[name]


db = connect(settings.DATABASE_URL, settings.DATABASE_NAME)
store = MongoStore(db) if db is not None else None
