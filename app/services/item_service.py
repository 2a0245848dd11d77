"""
Item Service

Assets and debts CRUD over the document store, plus the best-effort
secondary effects of every mutation:
- value history entry when an item is created or its amount changes
- net worth snapshot (total assets - total debts) after every mutation

Secondary effects run as post-commit hooks, so a failing history write or
snapshot never fails the asset/debt write itself.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.core.exceptions import DocumentNotFoundError, ForbiddenError
from app.core.rate_limit import now_ms
from app.services.document_store import DocumentStore
from app.services.hooks import PostCommitHooks

logger = logging.getLogger(__name__)

NETWORTH_COLLECTION = "netWorthSnapshots"


@dataclass(frozen=True)
class ItemKind:
    """Where one kind of item lives and which field carries its amount."""
    name: str
    collection: str
    amount_field: str
    history_collection: str
    history_key: str


ASSETS = ItemKind(
    name="asset",
    collection="assets",
    amount_field="value",
    history_collection="assetValueHistory",
    history_key="assetId",
)
DEBTS = ItemKind(
    name="debt",
    collection="debts",
    amount_field="amount",
    history_collection="debtValueHistory",
    history_key="debtId",
)


class ItemService:
    """
    Args:
        documents: Document store holding items, history and snapshots
        hooks: Post-commit hooks; the history and snapshot hooks by default
        clock: Epoch-millisecond clock
    """

    def __init__(
        self,
        documents: DocumentStore,
        hooks: Optional[PostCommitHooks] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.documents = documents
        self.clock = clock
        if hooks is None:
            hooks = PostCommitHooks()
            hooks.register("value-history", self.record_value_history)
            hooks.register("networth-snapshot", self.record_networth_snapshot)
        self.hooks = hooks

    async def list_items(self, kind: ItemKind, user_id: str) -> list[dict[str, Any]]:
        items = await self.documents.query(kind.collection, "userId", user_id)
        return sorted(items, key=lambda item: item.get("createdAt", 0), reverse=True)

    async def get_item(self, kind: ItemKind, user_id: str, item_id: str) -> dict[str, Any]:
        item = await self.documents.get(kind.collection, item_id)
        if item is None:
            raise DocumentNotFoundError(kind.name, item_id)
        if item.get("userId") != user_id:
            raise ForbiddenError(kind.name, item_id)
        return item

    async def add_item(self, kind: ItemKind, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        now = self.clock()
        document = {**data, "userId": user_id, "createdAt": now, "updatedAt": now}
        item_id = await self.documents.add(kind.collection, document)
        item = {**document, "id": item_id}

        await self.hooks.run(kind=kind, user_id=user_id, item=item, previous=None)
        return item

    async def update_item(
        self,
        kind: ItemKind,
        user_id: str,
        item_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        previous = await self.get_item(kind, user_id, item_id)
        changes = {**data, "updatedAt": self.clock()}
        await self.documents.update(kind.collection, item_id, changes)
        item = {**previous, **changes}

        await self.hooks.run(kind=kind, user_id=user_id, item=item, previous=previous)
        return item

    async def delete_item(self, kind: ItemKind, user_id: str, item_id: str) -> None:
        previous = await self.get_item(kind, user_id, item_id)
        await self.documents.delete(kind.collection, item_id)

        await self.hooks.run(kind=kind, user_id=user_id, item=None, previous=previous)

    async def get_total(self, kind: ItemKind, user_id: str) -> float:
        items = await self.documents.query(kind.collection, "userId", user_id)
        return float(sum(item.get(kind.amount_field, 0) for item in items))

    async def get_value_history(self, kind: ItemKind, user_id: str, item_id: str) -> list[dict[str, Any]]:
        await self.get_item(kind, user_id, item_id)
        entries = await self.documents.query(kind.history_collection, kind.history_key, item_id)
        return sorted(entries, key=lambda entry: entry["createdAt"], reverse=True)

    async def get_networth_history(self, user_id: str, limit: Optional[int] = None) -> list[dict[str, Any]]:
        snapshots = await self.documents.query(NETWORTH_COLLECTION, "userId", user_id)
        snapshots.sort(key=lambda snapshot: snapshot["createdAt"], reverse=True)
        return snapshots[:limit] if limit else snapshots

    # Post-commit hooks

    async def record_value_history(
        self,
        kind: ItemKind,
        user_id: str,
        item: Optional[dict[str, Any]],
        previous: Optional[dict[str, Any]],
    ) -> None:
        if item is None:
            return
        amount = item.get(kind.amount_field)
        if previous is not None and previous.get(kind.amount_field) == amount:
            return

        await self.documents.add(kind.history_collection, {
            kind.history_key: item["id"],
            "userId": user_id,
            kind.amount_field: amount,
            "note": "Initial value" if previous is None else "Value updated",
            "createdAt": self.clock(),
        })

    async def record_networth_snapshot(self, user_id: str, **_: Any) -> None:
        total_assets = await self.get_total(ASSETS, user_id)
        total_debts = await self.get_total(DEBTS, user_id)

        await self.documents.add(NETWORTH_COLLECTION, {
            "userId": user_id,
            "totalAssets": total_assets,
            "totalDebts": total_debts,
            "netWorth": total_assets - total_debts,
            "createdAt": self.clock(),
        })
