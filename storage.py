"""
Persistence for the store.

``Storage`` implements every collection operation the API needs on top of a
handful of primitives (``_insert``, ``_find``, ``_update_one`` ...). Two
backends provide the primitives:

* ``MongoStorage`` talks to MongoDB through pymongo (see ``database.py``).
* ``MemoryStorage`` keeps documents in process; it is the fallback when no
  ``DATABASE_URL`` is configured and what the tests run against.

Documents are plain dicts with a string ``id``. Single-document updates are
atomic in both backends; nothing spans several documents.
"""
import copy
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
from database import create_document, get_documents
from errors import ConflictError

logger = structlog.get_logger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING)]


def _now():
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Storage:
    name = "abstract"

    # Primitives, implemented by each backend
    def _insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def _find(self, collection: str, query: Optional[Dict[str, Any]] = None, sort=None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _update_one(self, collection: str, query: Dict[str, Any], fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _increment(self, collection: str, doc_id: str, field: str, amount: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _update_many(self, collection: str, query: Dict[str, Any], fields: Dict[str, Any]) -> int:
        raise NotImplementedError

    def _delete_many(self, collection: str, query: Dict[str, Any]) -> int:
        raise NotImplementedError

    # Shared helpers
    def _find_one(self, collection, query):
        found = self._find(collection, query, limit=1)
        return found[0] if found else None

    def _get(self, collection, doc_id):
        return self._find_one(collection, {"id": doc_id})

    def _create(self, collection, data):
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        now = _now()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        return self._insert(collection, doc)

    def _update(self, collection, doc_id, fields):
        return self._update_one(collection, {"id": doc_id}, fields)

    def _delete(self, collection, doc_id):
        return self._delete_many(collection, {"id": doc_id}) > 0

    def _ensure_unique(self, collection, field, value, exclude_id=None):
        existing = self._find_one(collection, {field: value})
        if existing and existing["id"] != exclude_id:
            raise ConflictError(f"{collection.capitalize()} with this {field} already exists")

    # Users
    def get_user(self, user_id):
        return self._get("user", user_id)

    def get_user_by_email(self, email):
        return self._find_one("user", {"email": email.lower()})

    def create_user(self, user):
        self._ensure_unique("user", "email", user.email.lower())
        doc = user.model_dump()
        doc["email"] = doc["email"].lower()
        return self._create("user", doc)

    def list_users(self):
        return self._find("user", sort=NEWEST_FIRST)

    def update_user(self, user_id, fields):
        return self._update("user", user_id, fields)

    def delete_user(self, user_id):
        return self._delete("user", user_id)

    # Categories
    def list_categories(self):
        return self._find("category", sort=[("is_primary", DESCENDING), ("name", ASCENDING)])

    def get_category(self, category_id):
        return self._get("category", category_id)

    def get_category_by_slug(self, slug):
        return self._find_one("category", {"slug": slug})

    def create_category(self, category):
        self._ensure_unique("category", "slug", category.slug)
        return self._create("category", category)

    # Products
    def list_products(self, category_id=None):
        query = {"category_id": category_id} if category_id else {}
        return self._find("product", query, sort=NEWEST_FIRST)

    def get_product(self, product_id):
        return self._get("product", product_id)

    def get_product_by_slug(self, slug):
        return self._find_one("product", {"slug": slug})

    def create_product(self, product):
        self._ensure_unique("product", "slug", product.slug)
        return self._create("product", product)

    def update_product(self, product_id, fields):
        if "slug" in fields:
            self._ensure_unique("product", "slug", fields["slug"], exclude_id=product_id)
        return self._update("product", product_id, fields)

    def delete_product(self, product_id):
        return self._delete("product", product_id)

    # Cart
    def list_cart_items(self, user_id):
        return self._find("cartitem", {"user_id": user_id}, sort=NEWEST_FIRST)

    def get_cart_item(self, item_id):
        return self._get("cartitem", item_id)

    def find_cart_line(self, user_id, product_id, size=None, color=None):
        query = {"user_id": user_id, "kind": "product", "product_id": product_id, "size": size, "color": color}
        return self._find_one("cartitem", query)

    def insert_cart_item(self, item):
        return self._create("cartitem", item)

    def update_cart_item(self, item_id, fields):
        return self._update("cartitem", item_id, fields)

    def increment_cart_quantity(self, item_id, amount):
        return self._increment("cartitem", item_id, "quantity", amount)

    def delete_cart_item(self, item_id):
        return self._delete("cartitem", item_id)

    def clear_cart(self, user_id):
        return self._delete_many("cartitem", {"user_id": user_id})

    # Orders
    def list_orders(self, user_id=None):
        query = {"user_id": user_id} if user_id else {}
        return self._find("order", query, sort=NEWEST_FIRST)

    def get_order(self, order_id):
        return self._get("order", order_id)

    def insert_order(self, order):
        return self._create("order", order)

    def update_order_status(self, order_id, new_status, expected_status=None):
        """Set the status; with ``expected_status`` only if it still holds."""
        query = {"id": order_id}
        if expected_status is not None:
            query["status"] = expected_status
        return self._update_one("order", query, {"status": new_status})

    # Addresses
    def list_addresses(self, user_id):
        return self._find("address", {"user_id": user_id}, sort=[("is_default", DESCENDING), ("created_at", DESCENDING)])

    def get_address(self, address_id):
        return self._get("address", address_id)

    def create_address(self, address):
        doc = address.model_dump()
        first = self._find_one("address", {"user_id": doc["user_id"]}) is None
        make_default = doc.pop("is_default") or first
        doc["is_default"] = False
        created = self._create("address", doc)
        if make_default:
            self.set_default_address(doc["user_id"], created["id"])
            created = self.get_address(created["id"])
        return created

    def update_address(self, address_id, fields):
        fields = dict(fields)
        make_default = fields.pop("is_default", None)
        address = self._update("address", address_id, fields) if fields else self.get_address(address_id)
        if address and make_default:
            self.set_default_address(address["user_id"], address_id)
            address = self.get_address(address_id)
        return address

    def delete_address(self, address_id):
        address = self.get_address(address_id)
        if not address or not self._delete("address", address_id):
            return False
        if address.get("is_default"):
            remaining = self._find("address", {"user_id": address["user_id"]}, sort=NEWEST_FIRST, limit=1)
            if remaining:
                self._update("address", remaining[0]["id"], {"is_default": True})
        return True

    def set_default_address(self, user_id, address_id):
        if not self._find_one("address", {"id": address_id, "user_id": user_id}):
            return False
        self._update_many("address", {"user_id": user_id, "is_default": True}, {"is_default": False})
        return self._update("address", address_id, {"is_default": True}) is not None

    # Banners
    def list_banners(self):
        return self._find("banner", sort=[("priority", DESCENDING), ("created_at", DESCENDING)])

    def list_active_banners(self, now=None):
        now = now or _now()
        banners = []
        for banner in self._find("banner", {"is_active": True}, sort=[("priority", DESCENDING), ("created_at", DESCENDING)]):
            start, end = _aware(banner.get("start_date")), _aware(banner.get("end_date"))
            if start and start > now:
                continue
            if end and end < now:
                continue
            banners.append(banner)
        return banners

    def get_banner(self, banner_id):
        return self._get("banner", banner_id)

    def create_banner(self, banner):
        return self._create("banner", banner)

    def update_banner(self, banner_id, fields):
        return self._update("banner", banner_id, fields)

    def delete_banner(self, banner_id):
        return self._delete("banner", banner_id)

    # Themes
    def list_themes(self):
        return self._find("theme", sort=NEWEST_FIRST)

    def get_theme(self, theme_id):
        return self._get("theme", theme_id)

    def get_active_theme(self):
        return self._find_one("theme", {"is_active": True})

    def create_theme(self, theme):
        doc = theme.model_dump()
        activate = doc.pop("is_active")
        doc["is_active"] = False
        created = self._create("theme", doc)
        if activate:
            self.activate_theme(created["id"])
            created = self.get_theme(created["id"])
        return created

    def update_theme(self, theme_id, fields):
        fields = dict(fields)
        activate = fields.pop("is_active", None)
        theme = self._update("theme", theme_id, fields) if fields else self.get_theme(theme_id)
        if theme and activate:
            self.activate_theme(theme_id)
            theme = self.get_theme(theme_id)
        return theme

    def delete_theme(self, theme_id):
        return self._delete("theme", theme_id)

    def activate_theme(self, theme_id):
        if not self.get_theme(theme_id):
            return False
        self._update_many("theme", {"is_active": True}, {"is_active": False})
        return self._update("theme", theme_id, {"is_active": True}) is not None


def _sort_key(value):
    return (value is not None, value)


class MemoryStorage(Storage):
    """In-process documents; lost on restart."""

    name = "memory"

    def __init__(self):
        self._collections = defaultdict(dict)
        self._lock = threading.RLock()

    @staticmethod
    def _matches(doc, query):
        return all(doc.get(key) == value for key, value in (query or {}).items())

    def _insert(self, collection, doc):
        doc = copy.deepcopy(doc)
        doc["id"] = str(ObjectId())
        with self._lock:
            self._collections[collection][doc["id"]] = doc
        return copy.deepcopy(doc)

    def _find(self, collection, query=None, sort=None, limit=None):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collections[collection].values() if self._matches(d, query)]
        if sort:
            # Later inserts win ties on a descending primary key
            if sort[0][1] == DESCENDING:
                docs.reverse()
            for key, direction in reversed(sort):
                docs.sort(key=lambda d: _sort_key(d.get(key)), reverse=direction == DESCENDING)
        return docs[:limit] if limit else docs

    def _update_one(self, collection, query, fields):
        with self._lock:
            for doc in self._collections[collection].values():
                if self._matches(doc, query):
                    doc.update(copy.deepcopy(fields))
                    doc["updated_at"] = _now()
                    return copy.deepcopy(doc)
        return None

    def _increment(self, collection, doc_id, field, amount):
        with self._lock:
            doc = self._collections[collection].get(doc_id)
            if doc is None:
                return None
            doc[field] = doc.get(field, 0) + amount
            doc["updated_at"] = _now()
            return copy.deepcopy(doc)

    def _update_many(self, collection, query, fields):
        count = 0
        with self._lock:
            for doc in self._collections[collection].values():
                if self._matches(doc, query):
                    doc.update(copy.deepcopy(fields))
                    doc["updated_at"] = _now()
                    count += 1
        return count

    def _delete_many(self, collection, query):
        with self._lock:
            docs = self._collections[collection]
            doomed = [doc_id for doc_id, doc in docs.items() if self._matches(doc, query)]
            for doc_id in doomed:
                del docs[doc_id]
        return len(doomed)


class MongoStorage(Storage):
    name = "mongodb"

    def __init__(self, db):
        self.db = db
        self.db["user"].create_index("email", unique=True)
        self.db["product"].create_index("slug", unique=True)
        self.db["category"].create_index("slug", unique=True)
        self.db["cartitem"].create_index("user_id")
        self.db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    @staticmethod
    def _query(query):
        """Translate ``id`` to ``_id``; returns None when the id cannot match."""
        query = dict(query or {})
        if "id" in query:
            doc_id = query.pop("id")
            if not ObjectId.is_valid(doc_id):
                return None
            query["_id"] = ObjectId(doc_id)
        return query

    @staticmethod
    def _serialize(doc):
        if doc is None:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return doc

    def _insert(self, collection, doc):
        try:
            inserted_id = create_document(collection, doc, database=self.db)
        except DuplicateKeyError:
            raise ConflictError(f"{collection.capitalize()} already exists")
        return self._get(collection, inserted_id)

    def _find(self, collection, query=None, sort=None, limit=None):
        query = self._query(query)
        if query is None:
            return []
        return [self._serialize(d) for d in get_documents(collection, query, limit=limit, sort=sort, database=self.db)]

    def _update_one(self, collection, query, fields):
        query = self._query(query)
        if query is None:
            return None
        try:
            doc = self.db[collection].find_one_and_update(
                query,
                {"$set": {**fields, "updated_at": _now()}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ConflictError(f"{collection.capitalize()} already exists")
        return self._serialize(doc)

    def _increment(self, collection, doc_id, field, amount):
        query = self._query({"id": doc_id})
        if query is None:
            return None
        doc = self.db[collection].find_one_and_update(
            query,
            {"$inc": {field: amount}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize(doc)

    def _update_many(self, collection, query, fields):
        query = self._query(query)
        if query is None:
            return 0
        return self.db[collection].update_many(query, {"$set": {**fields, "updated_at": _now()}}).matched_count

    def _delete_many(self, collection, query):
        query = self._query(query)
        if query is None:
            return 0
        return self.db[collection].delete_many(query).deleted_count


def build_storage():
    if database.db is not None:
        logger.info("storage_selected", backend="mongodb", database=database.DATABASE_NAME)
        return MongoStorage(database.db)
    logger.warning("storage_selected", backend="memory", note="DATABASE_URL not set, data is lost on restart")
    return MemoryStorage()


def get_storage(request: Request) -> Storage:
    return request.app.state.storage
