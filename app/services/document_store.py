"""
Document Store

Narrow interface over the document database holding assets, debts, value
history and net worth snapshots. Production deployments plug in a hosted
document database; the in-memory implementation backs development and tests.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional


class DocumentStore(ABC):
    """Abstract base class for document stores (collections of dict documents)."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[dict[str, Any]]:
        """Return the document including its "id", or None."""

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a document and return its generated id."""

    @abstractmethod
    async def update(self, collection: str, document_id: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document."""

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        pass

    @abstractmethod
    async def query(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        """All documents whose `field` equals `value`."""


class InMemoryDocumentStore(DocumentStore):
    """Dict-of-dicts document store; copies on the way in and out."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, document_id: str) -> Optional[dict[str, Any]]:
        document = self._collections.get(collection, {}).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        async with self._lock:
            self._collections.setdefault(collection, {})[document_id] = {
                **copy.deepcopy(data),
                "id": document_id,
            }
        return document_id

    async def update(self, collection: str, document_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            document = self._collections.get(collection, {}).get(document_id)
            if document is None:
                raise KeyError(f"{collection}/{document_id}")
            document.update(copy.deepcopy(data))

    async def delete(self, collection: str, document_id: str) -> None:
        async with self._lock:
            self._collections.get(collection, {}).pop(document_id, None)

    async def query(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(document)
            for document in self._collections.get(collection, {}).values()
            if document.get(field) == value
        ]
