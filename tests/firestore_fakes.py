"""Firestore をテストで再現するための簡易フェイク実装。"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore


class FakeDocumentSnapshot:
    def __init__(self, collection: str, doc_id: str, data: dict[str, Any] | None, client: "FakeFirestoreClient") -> None:
        self._collection = collection
        self.id = doc_id
        self._data = data
        self._client = client

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return None if self._data is None else dict(self._data)

    @property
    def reference(self) -> "FakeDocumentReference":
        return FakeDocumentReference(self._client, self._collection, self.id)


class FakeDocumentReference:
    def __init__(self, client: "FakeFirestoreClient", collection: str, doc_id: str) -> None:
        self._client = client
        self._collection = collection
        self.id = doc_id

    def _bucket(self, operation: str) -> dict[str, dict[str, Any]]:
        self._client._maybe_fail(f"{self._collection}.{operation}")
        return self._client._data.setdefault(self._collection, {})

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        bucket = self._bucket("set")
        if merge and self.id in bucket:
            bucket[self.id].update(data)
        else:
            bucket[self.id] = dict(data)

    def update(self, data: dict[str, Any]) -> None:
        bucket = self._bucket("update")
        if self.id not in bucket:
            raise gexc.NotFound(f"document {self._collection}/{self.id} not found")
        bucket[self.id].update(data)

    def get(self, transaction: "FakeTransaction | None" = None) -> FakeDocumentSnapshot:
        bucket = self._bucket("get")
        payload = dict(bucket[self.id]) if self.id in bucket else None
        return FakeDocumentSnapshot(self._collection, self.id, payload, self._client)

    def delete(self) -> None:
        bucket = self._bucket("delete")
        bucket.pop(self.id, None)


class FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", name: str) -> None:
        self._client = client
        self._name = name

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self._client, self._name, doc_id)

    def _all_snapshots(self) -> list[FakeDocumentSnapshot]:
        self._client._maybe_fail(f"{self._name}.query")
        bucket = self._client._data.setdefault(self._name, {})
        return [
            FakeDocumentSnapshot(self._name, doc_id, dict(data), self._client)
            for doc_id, data in bucket.items()
        ]

    def stream(self):
        yield from FakeQuery(self).stream()

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING):
        return FakeQuery(self).order_by(field_path, direction)

    def where(self, field_path: str, op_string: str, value: Any):
        return FakeQuery(self).where(field_path, op_string, value)

    def count(self, alias: str | None = None) -> "FakeAggregationQuery":
        return FakeAggregationQuery(FakeQuery(self), alias or "count")


class FakeQuery:
    def __init__(
        self,
        collection: FakeCollectionReference,
        *,
        orderings: list[tuple[str, bool]] | None = None,
        filters: list[tuple[str, str, Any]] | None = None,
        limit: int | None = None,
    ) -> None:
        self._collection = collection
        self._orderings: list[tuple[str, bool]] = list(orderings or [])
        self._filters: list[tuple[str, str, Any]] = list(filters or [])
        self._limit: int | None = limit

    def _clone(self, **kwargs: Any) -> "FakeQuery":
        return FakeQuery(
            self._collection,
            orderings=kwargs.get("orderings", self._orderings),
            filters=kwargs.get("filters", self._filters),
            limit=kwargs.get("limit", self._limit),
        )

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING) -> "FakeQuery":
        return self._clone(
            orderings=[*self._orderings, (field_path, direction == firestore.Query.DESCENDING)]
        )

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        return self._clone(filters=[*self._filters, (field_path, op_string, value)])

    def limit(self, value: int) -> "FakeQuery":
        return self._clone(limit=max(0, int(value)))

    def _matching_snapshots(self) -> list[FakeDocumentSnapshot]:
        docs = self._collection._all_snapshots()
        for field_path, op_string, expected in self._filters:
            docs = [
                doc
                for doc in docs
                if _matches_filter(doc, field_path, op_string, expected)
            ]
        for field_path, descending in reversed(self._orderings):
            docs.sort(
                key=lambda snap, fp=field_path: _order_value(snap, fp),
                reverse=descending,
            )
        if self._limit is not None:
            docs = docs[: self._limit]
        return docs

    def stream(self):
        for snapshot in self._matching_snapshots():
            yield snapshot

    def count(self, alias: str | None = None) -> "FakeAggregationQuery":
        return FakeAggregationQuery(self, alias or "count")


def _matches_filter(
    snapshot: FakeDocumentSnapshot, field_path: str, op_string: str, expected: Any
) -> bool:
    actual = (snapshot.to_dict() or {}).get(field_path)
    if op_string == "==":
        return actual == expected
    if actual is None:
        return False
    if op_string == ">=":
        return actual >= expected
    if op_string == "<=":
        return actual <= expected
    if op_string == ">":
        return actual > expected
    if op_string == "<":
        return actual < expected
    raise NotImplementedError(f"unsupported operator: {op_string}")


def _order_value(snapshot: FakeDocumentSnapshot, field_path: str) -> Any:
    value = (snapshot.to_dict() or {}).get(field_path)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        return value
    return str(value or "")


class FakeAggregationQuery:
    def __init__(self, query: FakeQuery, alias: str) -> None:
        self._query = query
        self._alias = alias

    def get(self, *args: Any, **kwargs: Any) -> list[list["FakeAggregationResult"]]:
        # 実クライアントと同じく [[AggregationResult]] の入れ子で返す
        total = len(self._query._matching_snapshots())
        return [[FakeAggregationResult(self._alias, total)]]


class FakeAggregationResult:
    def __init__(self, alias: str, value: int) -> None:
        self.alias = alias
        self.value = value


_TRANSACTION_NOT_IN_PROGRESS = "Transaction not in progress, cannot be used in API requests."


class FakeTransaction:
    """Buffers writes until _commit, like the real client."""

    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._in_progress = False
        self._id: str | None = None
        self._writes: list[tuple[FakeDocumentReference, dict[str, Any]]] = []

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def _begin(self) -> None:
        if self._in_progress:
            raise ValueError("Transaction already in progress.")
        self._in_progress = True
        self._id = f"fake-txn-{uuid.uuid4().hex}"
        self._client.transactions_begun += 1

    def _rollback(self) -> None:
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)
        self._writes.clear()
        self._in_progress = False
        self._client.transactions_rolled_back += 1

    def _commit(self) -> None:
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)
        self._client._maybe_fail("transaction.commit")
        for doc_ref, data in self._writes:
            doc_ref.set(data)
        self._writes.clear()
        self._in_progress = False

    def get(self, doc_ref: FakeDocumentReference):
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)
        # 実クライアントは単一参照でもジェネレータを返す
        yield doc_ref.get()

    def set(self, doc_ref: FakeDocumentReference, data: dict[str, Any], merge: bool = False) -> None:
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)
        self._writes.append((doc_ref, dict(data)))


class FakeWriteBatch:
    """Firestore の WriteBatch API を模した簡易フェイク。"""

    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._operations: list[tuple[str, FakeDocumentReference, dict[str, Any] | None]] = []

    def delete(self, doc_ref: FakeDocumentReference) -> None:
        self._operations.append(("delete", doc_ref, None))

    def set(self, doc_ref: FakeDocumentReference, data: dict[str, Any]) -> None:
        self._operations.append(("set", doc_ref, dict(data)))

    def commit(self) -> None:
        self._client._maybe_fail("batch.commit")
        self._client.batch_sizes.append(len(self._operations))
        for action, ref, data in self._operations:
            if action == "delete":
                ref.delete()
            else:
                ref.set(data or {})


def use_fake_firestore_client(monkeypatch, client: "FakeFirestoreClient | None" = None) -> "FakeFirestoreClient":
    """google.cloud.firestore.Client をフェイクに差し替え、同一インスタンスを返す。"""

    instance = client or FakeFirestoreClient()
    monkeypatch.setattr(firestore, "Client", lambda *args, **kwargs: instance)
    return instance


class FakeFirestoreClient:
    """google.cloud.firestore.Client 互換の最小フェイク。

    - collection/transaction/batch だけを実装し、AppFirestoreStore が依存する CRUD/検索/集計を網羅する。
    - fail_on に "progress.get" や "transaction.commit" のような操作名を入れると
      google.api_core の ServiceUnavailable（commit は Aborted）を送出する。
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self.fail_on: set[str] = set()
        self.transactions_begun = 0
        self.transactions_rolled_back = 0
        self.batch_sizes: list[int] = []

    def _maybe_fail(self, operation: str) -> None:
        if operation not in self.fail_on:
            return
        if operation == "transaction.commit":
            raise gexc.Aborted("Transaction lock timeout")
        raise gexc.ServiceUnavailable(f"{operation} unavailable")

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return dict(self._data.get(collection, {}))
