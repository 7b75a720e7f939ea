# survey_api/services/store.py
"""
Document store with local and DynamoDB backends.
Set DATABASE_URL to pick one:

    memory://                          in-process only (tests, demos)
    local:///abs/dir  local://rel/dir  one JSON file per collection
    dynamodb://<region>/<table_prefix> one DynamoDB table per collection

Filters are plain equality matches on top-level fields, e.g.
{"survey_id": "..."}; an empty filter matches everything.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlsplit

from fastapi import Request

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Filter = Dict[str, Any]


class StoreError(Exception):
    """Any failure talking to the store (timeouts, I/O, bad data)."""


class DuplicateKeyError(StoreError):
    """Insert or update would violate a unique index."""


class StoreConfigError(StoreError):
    """DATABASE_URL missing or not understood."""


def _matches(doc: Document, flt: Optional[Filter]) -> bool:
    return all(doc.get(k) == v for k, v in (flt or {}).items())


class DocumentStore:
    """Abstract store interface"""

    def insert_one(self, collection: str, doc: Document) -> None:
        """Insert a document; raises DuplicateKeyError on a unique clash"""
        raise NotImplementedError

    def find_one(self, collection: str, flt: Filter) -> Optional[Document]:
        """First matching document or None"""
        raise NotImplementedError

    def find(self, collection: str, flt: Optional[Filter] = None, skip: int = 0, limit: int = 0) -> List[Document]:
        """Matching documents in stored order; limit=0 means no limit"""
        raise NotImplementedError

    def update_one(self, collection: str, flt: Filter, fields: Document) -> int:
        """Overwrite the given fields on the first match, return matched count"""
        raise NotImplementedError

    def delete_one(self, collection: str, flt: Filter) -> int:
        """Delete the first match, return deleted count"""
        raise NotImplementedError

    def delete_many(self, collection: str, flt: Filter) -> int:
        """Delete every match, return deleted count"""
        raise NotImplementedError

    def create_unique_index(self, collection: str, field: str) -> None:
        raise NotImplementedError

    def ping(self) -> None:
        """Raise StoreError if the store cannot be reached"""
        raise NotImplementedError


class LocalDocumentStore(DocumentStore):
    """In-process collections, optionally mirrored to JSON files"""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir) if base_dir else None
        self._collections: Dict[str, List[Document]] = {}
        self._unique: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

    def _path(self, collection: str) -> Path:
        return self.base_dir / f"{collection}.json"

    def _docs(self, collection: str) -> List[Document]:
        if collection not in self._collections:
            docs: List[Document] = []
            if self.base_dir is not None and self._path(collection).exists():
                try:
                    with open(self._path(collection), "r", encoding="utf-8") as f:
                        docs = json.load(f)
                except (OSError, ValueError) as e:
                    raise StoreError(f"Failed to load collection {collection}: {e}") from e
                if not isinstance(docs, list):
                    raise StoreError(f"Collection file for {collection} is not a list")
            self._collections[collection] = docs
        return self._collections[collection]

    def _commit(self, collection: str, docs: List[Document]) -> None:
        """Write docs to disk, then make them the live collection."""
        if self.base_dir is not None:
            path = self._path(collection)
            tmp = path.with_suffix(".tmp")
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(docs, f, ensure_ascii=False, indent=2)
                # atomic replace
                tmp.replace(path)
            except OSError as e:
                raise StoreError(f"Failed to save collection {collection}: {e}") from e
        self._collections[collection] = docs

    def _check_unique(self, collection: str, candidate: Document, skip_id: Any = None) -> None:
        for field in self._unique.get(collection, ()):
            if field not in candidate:
                continue
            for doc in self._docs(collection):
                if doc.get("id") != skip_id and doc.get(field) == candidate[field]:
                    raise DuplicateKeyError(f"{collection}.{field} already has value {candidate[field]!r}")

    def insert_one(self, collection: str, doc: Document) -> None:
        with self._lock:
            docs = self._docs(collection)
            if any(d.get("id") == doc.get("id") for d in docs):
                raise DuplicateKeyError(f"{collection}.id already has value {doc.get('id')!r}")
            self._check_unique(collection, doc)
            self._commit(collection, docs + [copy.deepcopy(doc)])

    def find_one(self, collection: str, flt: Filter) -> Optional[Document]:
        with self._lock:
            for doc in self._docs(collection):
                if _matches(doc, flt):
                    return copy.deepcopy(doc)
        return None

    def find(self, collection: str, flt: Optional[Filter] = None, skip: int = 0, limit: int = 0) -> List[Document]:
        with self._lock:
            found = [d for d in self._docs(collection) if _matches(d, flt)]
        end = skip + limit if limit > 0 else None
        return copy.deepcopy(found[skip:end])

    def update_one(self, collection: str, flt: Filter, fields: Document) -> int:
        with self._lock:
            docs = self._docs(collection)
            for i, doc in enumerate(docs):
                if _matches(doc, flt):
                    self._check_unique(collection, fields, skip_id=doc.get("id"))
                    updated = list(docs)
                    updated[i] = {**doc, **copy.deepcopy(fields)}
                    self._commit(collection, updated)
                    return 1
        return 0

    def delete_one(self, collection: str, flt: Filter) -> int:
        with self._lock:
            docs = self._docs(collection)
            for i, doc in enumerate(docs):
                if _matches(doc, flt):
                    self._commit(collection, docs[:i] + docs[i + 1:])
                    return 1
        return 0

    def delete_many(self, collection: str, flt: Filter) -> int:
        with self._lock:
            docs = self._docs(collection)
            kept = [d for d in docs if not _matches(d, flt)]
            deleted = len(docs) - len(kept)
            if deleted:
                self._commit(collection, kept)
        return deleted

    def create_unique_index(self, collection: str, field: str) -> None:
        with self._lock:
            seen = set()
            for doc in self._docs(collection):
                value = doc.get(field)
                if value in seen:
                    raise DuplicateKeyError(f"Cannot index {collection}.{field}: duplicate {value!r}")
                seen.add(value)
            self._unique.setdefault(collection, set()).add(field)

    def ping(self) -> None:
        if self.base_dir is None:
            return
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Data directory {self.base_dir} is not usable: {e}") from e


# Marks the extra items that reserve a unique value in a DynamoDB table
GUARD_ATTR = "_guard_for"


class DynamoDocumentStore(DocumentStore):
    """
    DynamoDB backend. Each collection is a table named <prefix><collection>
    with partition key "id". DynamoDB has no unique secondary indexes, so a
    unique field is reserved with a guard item whose id is "<field>#<value>",
    written in the same transaction as the document itself.
    """

    def __init__(self, table_prefix: str, region: str, timeout: float = 5.0):
        self.table_prefix = table_prefix
        self.region = region
        self.timeout = timeout
        self._resource = None
        self._unique: Dict[str, Set[str]] = {}

    @property
    def resource(self):
        """Lazy load boto3 resource"""
        if self._resource is None:
            import boto3
            from botocore.config import Config

            self._resource = boto3.resource(
                "dynamodb",
                region_name=self.region,
                config=Config(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={"total_max_attempts": 1, "mode": "standard"},
                ),
            )
        return self._resource

    @property
    def client(self):
        return self.resource.meta.client

    def _table_name(self, collection: str) -> str:
        return f"{self.table_prefix}{collection}"

    def _table(self, collection: str):
        return self.resource.Table(self._table_name(collection))

    def _call(self, fn, *args, **kwargs):
        """Run a boto3 call, translating its errors into StoreError"""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            return fn(*args, **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                raise DuplicateKeyError(str(e)) from e
            if code == "TransactionCanceledException":
                reasons = e.response.get("CancellationReasons") or []
                if any(r.get("Code") == "ConditionalCheckFailed" for r in reasons):
                    raise DuplicateKeyError(str(e)) from e
            raise StoreError(str(e)) from e
        except BotoCoreError as e:
            raise StoreError(str(e)) from e

    def _guard_ids(self, collection: str, doc: Document) -> List[str]:
        return [f"{field}#{doc[field]}" for field in sorted(self._unique.get(collection, ())) if field in doc]

    def _scan(self, collection: str, flt: Optional[Filter]) -> List[Document]:
        from boto3.dynamodb.conditions import Attr

        condition = Attr(GUARD_ATTR).not_exists()
        for k, v in (flt or {}).items():
            condition = condition & Attr(k).eq(v)

        table = self._table(collection)
        items: List[Document] = []
        kwargs: Dict[str, Any] = {"FilterExpression": condition}
        while True:
            resp = self._call(table.scan, **kwargs)
            items.extend(resp.get("Items", []))
            if "LastEvaluatedKey" not in resp:
                break
            kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
        # scan order is arbitrary; ids are time-prefixed so this is creation order
        items.sort(key=lambda d: d.get("id", ""))
        return items

    def insert_one(self, collection: str, doc: Document) -> None:
        guards = self._guard_ids(collection, doc)
        if not guards:
            self._call(
                self._table(collection).put_item,
                Item=doc,
                ConditionExpression="attribute_not_exists(id)",
            )
            return

        from boto3.dynamodb.types import TypeSerializer

        ser = TypeSerializer()
        name = self._table_name(collection)
        items = [doc] + [{"id": g, GUARD_ATTR: doc["id"]} for g in guards]
        self._call(
            self.client.transact_write_items,
            TransactItems=[
                {
                    "Put": {
                        "TableName": name,
                        "Item": {k: ser.serialize(v) for k, v in item.items()},
                        "ConditionExpression": "attribute_not_exists(id)",
                    }
                }
                for item in items
            ],
        )

    def find_one(self, collection: str, flt: Filter) -> Optional[Document]:
        if set(flt) == {"id"}:
            resp = self._call(self._table(collection).get_item, Key={"id": flt["id"]})
            item = resp.get("Item")
            if item is None or GUARD_ATTR in item:
                return None
            return item
        found = self._scan(collection, flt)
        return found[0] if found else None

    def find(self, collection: str, flt: Optional[Filter] = None, skip: int = 0, limit: int = 0) -> List[Document]:
        found = self._scan(collection, flt)
        end = skip + limit if limit > 0 else None
        return found[skip:end]

    def update_one(self, collection: str, flt: Filter, fields: Document) -> int:
        if self._unique.get(collection, set()) & set(fields):
            raise StoreError(f"Updating a unique field of {collection} is not supported")
        doc = self.find_one(collection, flt)
        if doc is None:
            return 0

        names = {f"#f{i}": k for i, k in enumerate(fields)}
        values = {f":v{i}": v for i, v in enumerate(fields.values())}
        expr = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(fields)))
        try:
            self._call(
                self._table(collection).update_item,
                Key={"id": doc["id"]},
                UpdateExpression=expr,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(id)",
            )
        except DuplicateKeyError:
            # deleted between the read and the write
            return 0
        return 1

    def _delete_doc(self, collection: str, doc: Document) -> None:
        guards = self._guard_ids(collection, doc)
        if not guards:
            self._call(self._table(collection).delete_item, Key={"id": doc["id"]})
            return
        name = self._table_name(collection)
        self._call(
            self.client.transact_write_items,
            TransactItems=[
                {"Delete": {"TableName": name, "Key": {"id": {"S": key}}}}
                for key in [doc["id"]] + guards
            ],
        )

    def delete_one(self, collection: str, flt: Filter) -> int:
        doc = self.find_one(collection, flt)
        if doc is None:
            return 0
        self._delete_doc(collection, doc)
        return 1

    def delete_many(self, collection: str, flt: Filter) -> int:
        found = self._scan(collection, flt)
        for doc in found:
            self._delete_doc(collection, doc)
        return len(found)

    def create_unique_index(self, collection: str, field: str) -> None:
        # table.load() fails fast when the table is missing
        self._call(self._table(collection).load)
        self._unique.setdefault(collection, set()).add(field)

    def ping(self) -> None:
        self._call(self.client.list_tables, Limit=1)


def open_store(url: str, timeout: float = 5.0) -> DocumentStore:
    """Build a store from a DATABASE_URL-style connection string"""
    if not url:
        raise StoreConfigError("Set the DATABASE_URL environment variable (e.g. memory:// or local://data)")

    parts = urlsplit(url)
    if parts.scheme == "memory":
        return LocalDocumentStore()
    if parts.scheme == "local":
        base_dir = (parts.netloc + parts.path) or "data"
        return LocalDocumentStore(base_dir=base_dir)
    if parts.scheme == "dynamodb":
        prefix = parts.path.strip("/")
        if not parts.netloc or not prefix:
            raise StoreConfigError("DynamoDB URL must look like dynamodb://<region>/<table_prefix>")
        return DynamoDocumentStore(table_prefix=prefix, region=parts.netloc, timeout=timeout)
    raise StoreConfigError(f"Unsupported DATABASE_URL scheme: {parts.scheme!r}")


def get_store(request: Request) -> DocumentStore:
    """FastAPI dependency: the store opened at startup"""
    return request.app.state.store
