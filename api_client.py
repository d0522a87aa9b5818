"""
Python client for the store API.

``Session`` replaces the browser's global token/user storage with an explicit
object backed by a pluggable ``SessionStore``. ``StorefrontClient`` wraps an
``httpx.Client`` (a FastAPI ``TestClient`` works too) and attaches the bearer
token from the session to every call.
"""
import json
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import structlog

from designer import DesignSession
from errors import UploadFailed

logger = structlog.get_logger(__name__)

TOKEN_KEY = "authToken"
USER_KEY = "currentUser"


class MemorySessionStore:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def delete(self, key: str):
        self._data.pop(key, None)


class FileSessionStore:
    """Keeps the session in a JSON file so it survives restarts."""

    def __init__(self, path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            return json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("session_file_unreadable", path=str(self.path))
            return {}

    def _write(self, data: Dict[str, str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data))

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str):
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str):
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class Session:
    def __init__(self, store=None):
        self.store = store if store is not None else MemorySessionStore()

    @property
    def token(self) -> Optional[str]:
        return self.store.get(TOKEN_KEY)

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        raw = self.store.get(USER_KEY)
        return json.loads(raw) if raw else None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def is_admin(self) -> bool:
        user = self.user
        return bool(user) and user.get("role") == "admin"

    def start(self, auth: Dict[str, Any]):
        self.store.set(TOKEN_KEY, auth["token"])
        self.store.set(USER_KEY, json.dumps(auth["user"]))

    def clear(self):
        self.store.delete(TOKEN_KEY)
        self.store.delete(USER_KEY)

    def headers(self) -> Dict[str, str]:
        token = self.token
        return {"Authorization": f"Bearer {token}"} if token else {}


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class StorefrontClient:
    def __init__(self, http: httpx.Client, session: Optional[Session] = None):
        self.http = http
        self.session = session or Session()

    def _request(self, method: str, url: str, **kwargs) -> Any:
        headers = {**self.session.headers(), **kwargs.pop("headers", {})}
        response = self.http.request(method, url, headers=headers, **kwargs)
        if response.is_error:
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.text or response.reason_phrase
            raise ApiError(response.status_code, message)
        return response.json() if response.content else None

    # Auth
    def signup(self, email: str, password: str, name: str) -> Dict[str, Any]:
        auth = self._request("POST", "/api/auth/signup", json={"email": email, "password": password, "name": name})
        self.session.start(auth)
        return auth

    def login(self, email: str, password: str) -> Dict[str, Any]:
        auth = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.session.start(auth)
        return auth

    def logout(self):
        self.session.clear()

    # Catalog
    def list_products(self, category_id: Optional[str] = None):
        params = {"categoryId": category_id} if category_id else None
        return self._request("GET", "/api/products", params=params)

    def get_product(self, product_id: str):
        return self._request("GET", f"/api/products/{product_id}")

    # Cart
    def get_cart(self):
        return self._request("GET", "/api/cart")

    def add_to_cart(self, product_id: str, quantity: int = 1, size: Optional[str] = None, color: Optional[str] = None):
        payload = {"product_id": product_id, "quantity": quantity, "size": size, "color": color}
        return self._request("POST", "/api/cart", json=payload)

    def add_design_to_cart(self, design: DesignSession, quantity: int = 1):
        payload = {
            "quantity": quantity,
            "size": design.size,
            "color": design.color,
            "custom_design": design.to_custom_design().model_dump(),
        }
        return self._request("POST", "/api/cart", json=payload)

    def update_cart_item(self, item_id: str, quantity: int):
        return self._request("PUT", f"/api/cart/{item_id}", json={"quantity": quantity})

    def remove_cart_item(self, item_id: str):
        return self._request("DELETE", f"/api/cart/{item_id}")

    def clear_cart(self):
        return self._request("DELETE", "/api/cart")

    # Orders
    def place_order(self, address_id: Optional[str] = None, shipping_address: Optional[Dict[str, Any]] = None, payment_status: str = "paid"):
        payload = {"address_id": address_id, "shipping_address": shipping_address, "payment_status": payment_status}
        return self._request("POST", "/api/orders", json=payload)

    def list_orders(self):
        return self._request("GET", "/api/orders")

    def get_order(self, order_id: str):
        return self._request("GET", f"/api/orders/{order_id}")

    # Assets
    def upload_image(self, data: bytes, filename: str, content_type: str) -> str:
        try:
            result = self._request("POST", "/api/upload", files={"file": (filename, data, content_type)})
        except (ApiError, httpx.HTTPError) as e:
            raise UploadFailed(f"Upload failed: {e}")
        return result["url"]
