"""
Dual-mode persistence for the POS data layer.

Every operation tries the remote document store first. The first remote
failure of any kind switches the facade to OFFLINE for the rest of the
process, and from then on every operation is served by the local cache
store. Successful, non-empty remote reads refresh the cache so that a
later fallback sees reasonably fresh data.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import ValidationError

from database import LocalCacheStore
from models import (
    AdminCredentials,
    AuthKey,
    DebtRecord,
    Entity,
    FinancialRecord,
    Product,
    ShopProfile,
    Transaction,
    add_months,
    utcnow,
)
from remote_store import PreconditionFailed, RemoteStoreClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreMode(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class CollectionConfig:
    """How one entity collection is stored, seeded and ordered."""

    name: str
    model: Type[Entity]
    cache_key: str
    seed: Optional[Callable[[], List[Dict[str, Any]]]] = None
    # Return the seed instead of [] when the remote collection is empty
    seed_on_empty_remote: bool = False
    # Offline inserts go to the front of the cached list
    newest_first: bool = False
    # Field to sort listings by, descending
    sort_by: Optional[str] = None


@dataclass(frozen=True)
class SingletonConfig:
    """A single record addressed by a fixed document id."""

    doc_id: str
    model: Type[Entity]
    cache_key: str
    default: Optional[Callable[[], Dict[str, Any]]] = None
    # Absent remotely means "never configured": store the default and return it
    install_default_when_absent: bool = False
    collection: str = "settings"


# --- Seed data for a fresh install ---

def seed_products() -> List[Dict[str, Any]]:
    return [
        {"id": "1", "name": "Cosmic Latte", "price": 45000, "category": "Coffee", "stock": 100, "image": "https://picsum.photos/200/200?random=1"},
        {"id": "2", "name": "Nebula Matcha", "price": 48000, "category": "Tea", "stock": 85, "image": "https://picsum.photos/200/200?random=2"},
        {"id": "3", "name": "Quantum Croissant", "price": 35000, "category": "Food", "stock": 20, "image": "https://picsum.photos/200/200?random=3"},
        {"id": "4", "name": "Void Brew (Cold)", "price": 42000, "category": "Coffee", "stock": 150, "image": "https://picsum.photos/200/200?random=4"},
        {"id": "5", "name": "Solar Tea", "price": 30000, "category": "Tea", "stock": 50, "image": "https://picsum.photos/200/200?random=5"},
        {"id": "6", "name": "Asteroid Cake", "price": 55000, "category": "Food", "stock": 12, "image": "https://picsum.photos/200/200?random=6"},
    ]


def seed_keys() -> List[Dict[str, Any]]:
    now = utcnow()
    demo = AuthKey(
        id="admin-seed",
        key="KSR-DEMO-2025-KEYS",
        valid_until=add_months(now, 12),
        duration="yearly",
        price=0,
        created_at=now,
        is_active=True,
        usage_count=5,
        deviceId=None,
    )
    return [demo.model_dump(mode="json")]


def seed_profile() -> Dict[str, Any]:
    return {
        "name": "Lumina Coffee Space",
        "address": "Jl. Digital No. 2025, Cyber City",
        "phone": "0812-3456-7890",
        "footerMessage": "Thank you for visiting the future!",
    }


PRODUCTS = CollectionConfig("products", Product, "products", seed=seed_products, seed_on_empty_remote=True)
AUTH_KEYS = CollectionConfig("auth_keys", AuthKey, "auth_keys", seed=seed_keys, seed_on_empty_remote=True, newest_first=True)
TRANSACTIONS = CollectionConfig("transactions", Transaction, "transactions", newest_first=True, sort_by="date")
DEBTS = CollectionConfig("debts", DebtRecord, "debts", newest_first=True)
FINANCIALS = CollectionConfig("financials", FinancialRecord, "financials", newest_first=True)

ADMIN_CREDS = SingletonConfig("admin_creds", AdminCredentials, "admin_creds")
SHOP_PROFILE = SingletonConfig("shop_profile", ShopProfile, "shop_profile", default=seed_profile, install_default_when_absent=True)


def _dump(entity: Entity) -> Dict[str, Any]:
    return entity.model_dump(mode="json")


class RemoteDocuments:
    """Document operations served by the remote store."""

    def __init__(self, client: RemoteStoreClient):
        self.client = client

    async def find_one(self, config: CollectionConfig, field: str, value: Any) -> Optional[Dict[str, Any]]:
        documents = await self.client.query_by_field(config.name, field, value, limit=1)
        return documents[0] if documents else None

    async def get(self, config: CollectionConfig, doc_id: str) -> Optional[Dict[str, Any]]:
        # A fetched document carries only its fields; the id is its address
        document = await self.client.get_document(config.name, doc_id)
        return {"id": doc_id, **document} if document is not None else None

    async def put(self, config: CollectionConfig, entity: Entity) -> None:
        await self.client.put_document(config.name, entity.id, _dump(entity))

    async def update(self, config: CollectionConfig, doc_id: str, fields: Dict[str, Any]) -> None:
        await self.client.update_document(config.name, doc_id, fields=fields)

    async def delete(self, config: CollectionConfig, doc_id: str) -> None:
        await self.client.delete_document(config.name, doc_id)

    async def set_if_unset(self, config: CollectionConfig, doc_id: str, field: str, value: Any) -> bool:
        """
        Compare-and-set `field` from null to `value`.

        Returns True when the field ends up holding `value`, whether this
        call wrote it or a concurrent writer stored the same value first.
        """
        try:
            await self.client.update_document(config.name, doc_id, fields={field: value}, precondition={field: None})
            return True
        except PreconditionFailed:
            current = await self.client.get_document(config.name, doc_id)
            return current is not None and current.get(field) == value

    async def increment(self, config: CollectionConfig, doc_id: str, field: str, amount: int = 1) -> None:
        await self.client.update_document(config.name, doc_id, increments={field: amount})


class CachedDocuments:
    """The same document operations, served by the local cache store."""

    def __init__(self, facade: "PersistenceFacade"):
        self.facade = facade

    def _load(self, config: CollectionConfig) -> List[Dict[str, Any]]:
        return self.facade._cached_documents(config)

    def _store(self, config: CollectionConfig, documents: List[Dict[str, Any]]) -> None:
        self.facade.cache.write(config.cache_key, documents)

    async def find_one(self, config: CollectionConfig, field: str, value: Any) -> Optional[Dict[str, Any]]:
        return next((d for d in self._load(config) if d.get(field) == value), None)

    async def get(self, config: CollectionConfig, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one(config, "id", doc_id)

    async def put(self, config: CollectionConfig, entity: Entity) -> None:
        documents = self._load(config)
        document = _dump(entity)
        index = next((i for i, d in enumerate(documents) if d.get("id") == entity.id), None)
        if index is not None:
            documents[index] = document
        elif config.newest_first:
            documents.insert(0, document)
        else:
            documents.append(document)
        self._store(config, documents)

    async def update(self, config: CollectionConfig, doc_id: str, fields: Dict[str, Any]) -> None:
        documents = [{**d, **fields} if d.get("id") == doc_id else d for d in self._load(config)]
        self._store(config, documents)

    async def delete(self, config: CollectionConfig, doc_id: str) -> None:
        self._store(config, [d for d in self._load(config) if d.get("id") != doc_id])

    async def set_if_unset(self, config: CollectionConfig, doc_id: str, field: str, value: Any) -> bool:
        documents = self._load(config)
        for document in documents:
            if document.get("id") != doc_id:
                continue
            if document.get(field) is None:
                document[field] = value
                self._store(config, documents)
                return True
            return document.get(field) == value
        return False

    async def increment(self, config: CollectionConfig, doc_id: str, field: str, amount: int = 1) -> None:
        documents = self._load(config)
        for document in documents:
            if document.get("id") == doc_id:
                document[field] = (document.get(field) or 0) + amount
        self._store(config, documents)


class PersistenceFacade:
    """
    Remote-first, cache-fallback access to every POS entity.

    One instance per process; collaborators receive it explicitly.
    """

    def __init__(self, remote: RemoteStoreClient, cache: LocalCacheStore):
        self.remote = remote
        self.cache = cache
        self.mode = StoreMode.ONLINE
        self._remote_documents = RemoteDocuments(remote)
        self._cached_documents_view = CachedDocuments(self)

    @property
    def is_offline(self) -> bool:
        return self.mode is StoreMode.OFFLINE

    def _go_offline(self, error: Exception):
        logger.warning("Remote store error (switching to offline mode): %s", error)
        self.mode = StoreMode.OFFLINE

    # --- Helpers: local cache ---

    def _cached_documents(self, config: CollectionConfig) -> List[Dict[str, Any]]:
        documents = self.cache.read(config.cache_key)
        if documents is None:
            return config.seed() if config.seed else []
        return list(documents)

    def _parse(self, config: CollectionConfig, documents: List[Dict[str, Any]]) -> List[Entity]:
        entities = []
        for document in documents:
            try:
                entities.append(config.model.model_validate(document))
            except ValidationError as e:
                logger.warning("Skipping malformed %s record %r: %s", config.name, document.get("id"), e)
        return entities

    def _sorted(self, config: CollectionConfig, entities: List[Entity]) -> List[Entity]:
        if config.sort_by:
            return sorted(entities, key=lambda e: getattr(e, config.sort_by), reverse=True)
        return entities

    def _refresh_cache(self, config: CollectionConfig, entities: List[Entity]):
        self.cache.write(config.cache_key, [_dump(e) for e in entities])

    # --- Generic operations ---

    async def run(self, operation: Callable[[Any], Awaitable[T]]) -> T:
        """
        Run `operation` against one document view.

        The remote view is tried first; if it raises, the whole operation
        is re-run against the cache view, so lookups and writes of one
        operation always hit the same store.
        """
        if not self.is_offline:
            try:
                return await operation(self._remote_documents)
            except Exception as e:
                self._go_offline(e)
        return await operation(self._cached_documents_view)

    async def list_all(self, config: CollectionConfig) -> List[Entity]:
        if not self.is_offline:
            try:
                documents = await self.remote.list_documents(config.name)
                entities = [config.model.model_validate(d) for d in documents]
            except Exception as e:
                self._go_offline(e)
            else:
                if entities:
                    self._refresh_cache(config, entities)
                    return self._sorted(config, entities)
                if config.seed_on_empty_remote and config.seed:
                    return self._sorted(config, self._parse(config, config.seed()))
                return []
        return self._sorted(config, self._parse(config, self._cached_documents(config)))

    async def save(self, config: CollectionConfig, entity: Entity) -> None:
        await self.run(lambda store: store.put(config, entity))

    async def delete(self, config: CollectionConfig, doc_id: str) -> None:
        await self.run(lambda store: store.delete(config, doc_id))

    async def update_fields(self, config: CollectionConfig, doc_id: str, fields: Dict[str, Any]) -> None:
        await self.run(lambda store: store.update(config, doc_id, fields))

    async def get_singleton(self, config: SingletonConfig) -> Optional[Entity]:
        if not self.is_offline:
            try:
                document = await self.remote.get_document(config.collection, config.doc_id)
                if document is None:
                    if not (config.install_default_when_absent and config.default):
                        return None
                    default = config.model.model_validate(config.default())
                    await self.remote.put_document(config.collection, config.doc_id, _dump(default))
                    return default
                value = config.model.model_validate(document)
            except Exception as e:
                self._go_offline(e)
            else:
                self.cache.write(config.cache_key, _dump(value))
                return value

        document = self.cache.read(config.cache_key)
        if document is None:
            document = config.default() if config.default else None
        return config.model.model_validate(document) if document is not None else None

    async def put_singleton(self, config: SingletonConfig, value: Entity) -> None:
        if not self.is_offline:
            try:
                await self.remote.put_document(config.collection, config.doc_id, _dump(value))
                return
            except Exception as e:
                self._go_offline(e)
        self.cache.write(config.cache_key, _dump(value))

    # --- Admin Credentials ---

    async def get_admin_credentials(self) -> Optional[AdminCredentials]:
        return await self.get_singleton(ADMIN_CREDS)

    async def update_admin_credentials(self, username: str, password: str) -> None:
        await self.put_singleton(ADMIN_CREDS, AdminCredentials(username=username, password=password))

    # --- Products ---

    async def get_products(self) -> List[Product]:
        return await self.list_all(PRODUCTS)

    async def save_product(self, product: Product) -> None:
        await self.save(PRODUCTS, product)

    async def delete_product(self, product_id: str) -> None:
        await self.delete(PRODUCTS, product_id)

    # --- Keys ---

    async def get_keys(self) -> List[AuthKey]:
        return await self.list_all(AUTH_KEYS)

    async def add_key(self, key: AuthKey) -> None:
        await self.save(AUTH_KEYS, key)

    async def revoke_key(self, key_id: str) -> None:
        await self.update_fields(AUTH_KEYS, key_id, {"is_active": False})

    # --- Transactions ---

    async def get_transactions(self) -> List[Transaction]:
        return await self.list_all(TRANSACTIONS)

    async def add_transaction(self, tx: Transaction) -> None:
        """Record a sale and take the sold quantities out of stock (never below zero)."""

        async def record(store):
            await store.put(TRANSACTIONS, tx)
            for item in tx.items:
                product = await store.get(PRODUCTS, item.id)
                if product is not None:
                    stock = max(0, (product.get("stock") or 0) - item.quantity)
                    await store.update(PRODUCTS, item.id, {"stock": stock})

        await self.run(record)

    # --- Debt ---

    async def get_debts(self) -> List[DebtRecord]:
        return await self.list_all(DEBTS)

    async def save_debt(self, debt: DebtRecord) -> None:
        await self.save(DEBTS, debt)

    async def add_debt_payment(self, debt_id: str, amount: float) -> DebtRecord:
        if amount <= 0:
            raise ValueError("Payment amount must be positive")

        async def pay(store) -> Optional[DebtRecord]:
            document = await store.get(DEBTS, debt_id)
            if document is None:
                return None
            updated = DebtRecord.model_validate(document).with_payment(amount)
            await store.put(DEBTS, updated)
            return updated

        updated = await self.run(pay)
        if updated is None:
            raise LookupError(f"Debt {debt_id} not found")
        return updated

    # --- Finance ---

    async def get_financial_records(self) -> List[FinancialRecord]:
        return await self.list_all(FINANCIALS)

    async def add_financial_record(self, record: FinancialRecord) -> None:
        await self.save(FINANCIALS, record)

    # --- Profile ---

    async def get_shop_profile(self) -> ShopProfile:
        return await self.get_singleton(SHOP_PROFILE)

    async def save_shop_profile(self, profile: ShopProfile) -> None:
        await self.put_singleton(SHOP_PROFILE, profile)
