"""
Persistence gateway over named document collections.

Documents are plain dicts of JSON-compatible values, exposed to callers with
their key under ``id``. A document created with an ``id`` keeps it; otherwise
the store assigns a random hex id.
"""
import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from leave_portal.core.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPERATORS = ("==", "!=", "in", "array_contains")


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"unsupported predicate operator: {self.op!r}")


def where(field: str, op: str, value: Any) -> Predicate:
    return Predicate(field, op, value)


class PersistenceGateway(ABC):
    """
    create / get / query / update, each bounded by ``timeout`` seconds.
    Driver failures and timeouts are raised as PersistenceError.
    """

    driver_errors: tuple = ()

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    async def _call(self, operation: str, collection: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("%s on %s timed out after %.1fs", operation, collection, self.timeout)
            raise PersistenceError(
                f"{operation} on {collection} timed out after {self.timeout}s"
            ) from exc
        except self.driver_errors as exc:
            logger.error("%s on %s failed: %s", operation, collection, exc)
            raise PersistenceError(f"{operation} on {collection} failed: {exc}") from exc

    async def create(self, collection: str, doc: Dict[str, Any]) -> str:
        return await self._call("create", collection, self._create(collection, doc))

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("get", collection, self._get(collection, doc_id))

    async def query(
        self, collection: str, predicates: Sequence[Predicate] = ()
    ) -> List[Dict[str, Any]]:
        return await self._call("query", collection, self._query(collection, list(predicates)))

    async def update(
        self,
        collection: str,
        doc_id: str,
        partial: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Merge ``partial`` into the document. When ``expected`` is given the
        write only happens if every listed field still holds that value.
        Returns False when the document is missing or the guard failed.
        """
        return await self._call(
            "update", collection, self._update(collection, doc_id, partial, expected or {})
        )

    @abstractmethod
    async def _create(self, collection: str, doc: Dict[str, Any]) -> str: ...

    @abstractmethod
    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def _query(self, collection: str, predicates: List[Predicate]) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def _update(
        self,
        collection: str,
        doc_id: str,
        partial: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> bool: ...


def _to_mongo_filter(predicates: List[Predicate]) -> Dict[str, Any]:
    mongo_filter: Dict[str, Any] = {}
    for p in predicates:
        field = "_id" if p.field == "id" else p.field
        if p.op in ("==", "array_contains"):
            condition: Any = p.value
        elif p.op == "!=":
            condition = {"$ne": p.value}
        else:
            condition = {"$in": list(p.value)}
        mongo_filter[field] = condition
    return mongo_filter


def _from_mongo(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(raw)
    data["id"] = str(data.pop("_id"))
    return data


class MongoGateway(PersistenceGateway):
    driver_errors = (PyMongoError,)

    def __init__(self, database: AsyncIOMotorDatabase, timeout: float = 5.0) -> None:
        super().__init__(timeout)
        self.database = database

    async def _create(self, collection: str, doc: Dict[str, Any]) -> str:
        data = {k: v for k, v in doc.items() if k != "id"}
        data["_id"] = doc.get("id") or uuid.uuid4().hex
        result = await self.database[collection].insert_one(data)
        return str(result.inserted_id)

    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raw = await self.database[collection].find_one({"_id": doc_id})
        return _from_mongo(raw) if raw else None

    async def _query(self, collection: str, predicates: List[Predicate]) -> List[Dict[str, Any]]:
        cursor = self.database[collection].find(_to_mongo_filter(predicates))
        return [_from_mongo(raw) for raw in await cursor.to_list(length=None)]

    async def _update(
        self,
        collection: str,
        doc_id: str,
        partial: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> bool:
        guard = {"_id": doc_id, **expected}
        data = {k: v for k, v in partial.items() if k != "id"}
        result = await self.database[collection].update_one(guard, {"$set": data})
        return result.matched_count == 1


def _matches(doc: Dict[str, Any], predicate: Predicate) -> bool:
    value = doc.get(predicate.field)
    if predicate.op == "==":
        return value == predicate.value
    if predicate.op == "!=":
        return value != predicate.value
    if predicate.op == "in":
        return value in predicate.value
    return isinstance(value, list) and predicate.value in value


class InMemoryGateway(PersistenceGateway):
    """
    Dict-backed store. Every operation completes without suspending, so a
    guarded update is an atomic compare-and-set on the event loop.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        super().__init__(timeout)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def _create(self, collection: str, doc: Dict[str, Any]) -> str:
        doc_id = doc.get("id") or uuid.uuid4().hex
        data = copy.deepcopy(doc)
        data["id"] = doc_id
        self._collection(collection)[doc_id] = data
        return doc_id

    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def _query(self, collection: str, predicates: List[Predicate]) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(doc)
            for doc in self._collection(collection).values()
            if all(_matches(doc, p) for p in predicates)
        ]

    async def _update(
        self,
        collection: str,
        doc_id: str,
        partial: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> bool:
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return False
        if any(doc.get(field) != value for field, value in expected.items()):
            return False
        doc.update(copy.deepcopy({k: v for k, v in partial.items() if k != "id"}))
        return True
