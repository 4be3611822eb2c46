"""
Client-side catalog cache.

``ShopState`` mirrors the active catalog plus the signed-in user's cart and
wishlist so a UI can render without a round trip per interaction. It is an
explicit object handed to whatever needs it, not a module global.

Local state may be ahead of the server. Cart and wishlist changes are applied
locally first and then mirrored to the API; a failed mirror is reported
through ``notify`` and is never rolled back. The catalog is only reconciled
by an explicit refresh or by the ``*_global_state`` patches.
"""
import json
import logging
import math
import os
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from cart import Cart, apply_quantity, cart_amount, cart_count, increment
from errors import ValidationError
from uploads import IMAGE_FIELDS

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
DEFAULT_TIMEOUT = 10.0

# anything that means "the server did not give us a usable answer"
SYNC_ERRORS = (httpx.HTTPError, ValueError)

Notifier = Callable[[str, str], None]


def clean_token(raw: Optional[str]) -> Optional[str]:
    """Return the token if it looks like a signed JWT (three dot-separated parts)."""
    if not raw or raw in ("null", "undefined"):
        return None
    cleaned = raw.strip().strip('"')
    parts = cleaned.split(".")
    if len(parts) != 3 or not all(parts):
        return None
    return cleaned


def log_notification(level: str, message: str) -> None:
    logger.log(logging.ERROR if level == "error" else logging.INFO, message)


class MemoryStorage:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage(MemoryStorage):
    """Key/value storage kept in a JSON file, the way a browser keeps localStorage."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        if os.path.exists(path):
            with open(path) as f:
                self._data = json.load(f)

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._flush()

    def remove(self, key: str) -> None:
        super().remove(key)
        self._flush()

    def _flush(self) -> None:
        with open(self.path, "w") as f:
            json.dump(self._data, f)


class ShopState:
    def __init__(self, backend_url: str = "", http: Optional[httpx.Client] = None, storage: Optional[MemoryStorage] = None,
                 notify: Optional[Notifier] = None, on_logout: Optional[Callable[[], None]] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        # a finite timeout means a hung request can never pin a loading flag
        self.http = http if http is not None else httpx.Client(base_url=backend_url, timeout=timeout)
        self.storage = storage if storage is not None else MemoryStorage()
        self.notify = notify or log_notification
        self.on_logout = on_logout

        self.products: List[Dict[str, Any]] = []
        self.cart_items: Cart = {}
        self.wishlist: List[str] = []
        self.token: Optional[str] = None
        self.products_loading = False

    def initialize(self) -> None:
        self.get_products_data()
        self.load_token()

    def call(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["token"] = token
        response = self.http.request(method, path, headers=headers, **kwargs)
        response.raise_for_status()
        return response.json()

    # Catalog

    def _load_products(self, fallback: List[Dict[str, Any]], show_toast: bool, verb: str,
                       headers: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        self.products_loading = True
        try:
            data = self.call("GET", "/api/product/list", headers=headers)
            if not data.get("success"):
                raise ValueError(data.get("message") or "Failed to load products")
            self.products = data["products"]
            logger.debug("%s %d products", verb, len(self.products))
            if show_toast:
                self.notify("success", f"{verb} {len(self.products)} products")
            return self.products
        except SYNC_ERRORS as e:
            logger.warning("Error loading products: %s", e)
            if show_toast:
                self.notify("error", "Error loading products")
            return fallback
        finally:
            self.products_loading = False

    def get_products_data(self, show_toast: bool = False) -> List[Dict[str, Any]]:
        return self._load_products([], show_toast, "Loaded")

    def refresh_products(self, show_toast: bool = False) -> List[Dict[str, Any]]:
        """Replace the cached catalog; on failure keep and return the old one."""
        return self._load_products(self.products, show_toast, "Refreshed")

    def force_refresh_products(self) -> List[Dict[str, Any]]:
        headers = {"Cache-Control": "no-cache", "Pragma": "no-cache"}
        return self._load_products(self.products, True, "Refreshed", headers=headers)

    def add_product_to_global_state(self, product: Dict[str, Any]) -> None:
        for index, existing in enumerate(self.products):
            if existing["_id"] == product["_id"]:
                self.products = self.products[:index] + [product] + self.products[index + 1:]
                return
        self.products = [product] + self.products

    def remove_product_from_global_state(self, product_id: str) -> None:
        self.products = [p for p in self.products if p["_id"] != product_id]

    def update_product_in_global_state(self, product_id: str, updates: Mapping[str, Any]) -> None:
        self.products = [{**p, **updates} if p["_id"] == product_id else p for p in self.products]

    # Cart

    def add_to_cart(self, item_id: str, size: str) -> bool:
        try:
            self.cart_items = increment(self.cart_items, item_id, size)
        except ValidationError as e:
            self.notify("error", e.message)
            return False
        if not self.token:
            self.notify("info", "Login to save your cart")
            return True

        try:
            data = self.call("POST", "/api/cart/add", token=self.token, json={"itemId": item_id, "size": size})
        except SYNC_ERRORS as e:
            logger.warning("Cart sync failed: %s", e)
            self.notify("error", "Failed to add to cart")
            return True
        if data.get("success"):
            self.notify("success", data.get("message") or "Added to cart")
            if data.get("cartData") is not None:
                self.cart_items = data["cartData"]
        else:
            self.notify("error", data.get("message") or "Failed to add to cart")
        return True

    def update_quantity(self, item_id: str, size: str, quantity: int) -> bool:
        try:
            self.cart_items = apply_quantity(self.cart_items, item_id, size, quantity)
        except ValidationError as e:
            self.notify("error", e.message)
            return False
        if not self.token:
            return True

        try:
            data = self.call("POST", "/api/cart/update", token=self.token,
                             json={"itemId": item_id, "size": size, "quantity": quantity})
        except SYNC_ERRORS as e:
            logger.warning("Cart sync failed: %s", e)
            self.notify("error", "Error updating cart")
            return True
        if not data.get("success"):
            self.notify("error", data.get("message") or "Failed to update cart")
        return True

    def get_cart_count(self) -> int:
        return cart_count(self.cart_items)

    def get_cart_amount(self) -> float:
        return cart_amount(self.cart_items, self.products)

    def get_user_cart(self, token: str) -> None:
        try:
            data = self.call("POST", "/api/cart/get", token=token)
        except SYNC_ERRORS as e:
            logger.warning("Could not fetch cart: %s", e)
            return
        if data.get("success") and data.get("cartData") is not None:
            self.cart_items = data["cartData"]
        elif data.get("error") == "authentication":
            self.logout()

    # Session

    def load_token(self) -> None:
        saved = self.storage.get(TOKEN_KEY)
        token = clean_token(saved)
        if token:
            self._adopt(token)
            return
        if saved is not None:
            logger.warning("Invalid token format detected, clearing token")
        self.storage.remove(TOKEN_KEY)
        self.token = None

    def _adopt(self, token: str) -> None:
        self.token = token
        self.storage.set(TOKEN_KEY, token)
        self.get_user_cart(token)
        self.get_wishlist()

    def login(self, new_token: str) -> bool:
        token = clean_token(new_token)
        if token is None:
            self.notify("error", "Invalid authentication token")
            return False
        self._adopt(token)
        return True

    def logout(self) -> None:
        self.token = None
        self.cart_items = {}
        self.wishlist = []
        self.storage.remove(TOKEN_KEY)
        self.notify("info", "Logged out successfully")
        if self.on_logout:
            self.on_logout()

    # Wishlist

    def get_wishlist(self) -> None:
        if not self.token:
            return
        try:
            data = self.call("POST", "/api/user/wishlist/get", token=self.token)
        except SYNC_ERRORS as e:
            logger.warning("Could not fetch wishlist: %s", e)
            self.notify("error", "Failed to load wishlist")
            return
        if data.get("success"):
            self.wishlist = data["wishlist"]

    def _sync_wishlist(self, path: str, product_id: str, done: str, failed: str) -> None:
        try:
            data = self.call("POST", path, token=self.token, json={"productId": product_id})
        except SYNC_ERRORS as e:
            logger.warning("Wishlist sync failed: %s", e)
            self.notify("error", failed)
            return
        if data.get("success"):
            self.wishlist = data["wishlist"]
            self.notify("success", done)
        else:
            self.notify("error", data.get("message") or failed)

    def add_to_wishlist(self, product_id: str) -> bool:
        if not self.token:
            self.notify("info", "Login to use wishlist")
            return False
        if product_id not in self.wishlist:
            self.wishlist = self.wishlist + [product_id]
        self._sync_wishlist("/api/user/wishlist/add", product_id, "Added to wishlist", "Failed to add to wishlist")
        return True

    def remove_from_wishlist(self, product_id: str) -> bool:
        if not self.token:
            return False
        self.wishlist = [pid for pid in self.wishlist if pid != product_id]
        self._sync_wishlist("/api/user/wishlist/remove", product_id, "Removed from wishlist",
                            "Failed to remove from wishlist")
        return True


class SellerDashboard:
    """The signed-in seller's own listings.

    Each mutating action is gated by an in-flight flag scoped to the listing it
    touches, so a second click on the same listing is ignored while other
    listings stay usable.
    """

    def __init__(self, shop: ShopState):
        self.shop = shop
        self.products: List[Dict[str, Any]] = []
        self.loading = False
        self.submitting = False
        self.deleting: set = set()
        self.updating_stock: set = set()

    def _authed(self, method: str, path: str, **kwargs) -> Optional[Dict[str, Any]]:
        """Call the API with the session token; None means the failure was already reported."""
        if not self.shop.token:
            self.shop.notify("error", "Please login to manage your products")
            return None
        data = self.shop.call(method, path, token=self.shop.token, **kwargs)
        if data.get("error") == "authentication":
            self.shop.notify("error", data.get("message") or "Please login again")
            self.shop.logout()
            return None
        if not data.get("success"):
            self.shop.notify("error", data.get("message") or "Request failed")
            return None
        return data

    def fetch_my_products(self) -> List[Dict[str, Any]]:
        self.loading = True
        try:
            data = self._authed("GET", "/api/product/my-products")
            if data is not None:
                self.products = data["products"]
        except SYNC_ERRORS as e:
            logger.warning("Error loading own products: %s", e)
            self.shop.notify("error", "Error loading products")
        finally:
            self.loading = False
        return self.products

    def add_product(self, fields: Mapping[str, Any],
                    images: Mapping[str, Tuple[str, bytes, str]]) -> Optional[Dict[str, Any]]:
        """Validate and submit a new listing; ``images`` maps slot name to (filename, content, type)."""
        problem = validate_new_listing(fields, images)
        if problem:
            self.shop.notify("error", problem)
            return None
        if self.submitting:
            return None

        form = {}
        for key, value in fields.items():
            if value is None:
                continue
            if key == "sizes":
                form[key] = json.dumps(list(value))
            elif isinstance(value, bool):
                form[key] = "true" if value else "false"
            else:
                form[key] = str(value)
        files = {slot: images[slot] for slot in IMAGE_FIELDS if images.get(slot)}

        self.submitting = True
        try:
            data = self._authed("POST", "/api/product/add", data=form, files=files)
        except SYNC_ERRORS as e:
            logger.warning("Error adding product: %s", e)
            self.shop.notify("error", "Error adding product. Please try again.")
            return None
        finally:
            self.submitting = False
        if data is None:
            return None

        product = data["product"]
        self.products = [product] + [p for p in self.products if p["_id"] != product["_id"]]
        self.shop.add_product_to_global_state(product)
        self.shop.notify("success", "Product added successfully!")
        return product

    def change_stock(self, product_id: str, change: int) -> bool:
        if product_id in self.updating_stock:
            return False
        product = next((p for p in self.products if p["_id"] == product_id), None)
        if product is None:
            return False
        new_stock = max(0, product.get("stock", 1) + change)

        self.updating_stock.add(product_id)
        try:
            data = self._authed("POST", "/api/product/update", data={"id": product_id, "stock": str(new_stock)})
        except SYNC_ERRORS as e:
            logger.warning("Error updating stock: %s", e)
            self.shop.notify("error", "Error updating stock")
            return False
        finally:
            self.updating_stock.discard(product_id)
        if data is None:
            return False

        self.products = [{**p, "stock": new_stock} if p["_id"] == product_id else p for p in self.products]
        self.shop.update_product_in_global_state(product_id, {"stock": new_stock})
        self.shop.notify("success", f"Stock updated to {new_stock}")
        return True

    def delete_product(self, product_id: str) -> bool:
        if product_id in self.deleting:
            return False
        self.deleting.add(product_id)
        try:
            data = self._authed("POST", "/api/product/remove", json={"id": product_id})
        except SYNC_ERRORS as e:
            logger.warning("Error deleting product: %s", e)
            self.shop.notify("error", "Error deleting product")
            return False
        finally:
            self.deleting.discard(product_id)
        if data is None:
            return False

        self.products = [p for p in self.products if p["_id"] != product_id]
        self.shop.remove_product_from_global_state(product_id)
        self.shop.notify("success", "Product deleted successfully")
        return True


def validate_new_listing(fields: Mapping[str, Any], images: Mapping[str, Any]) -> Optional[str]:
    """Return the first problem with a new-listing form, or None."""
    if not str(fields.get("name") or "").strip():
        return "Product name is required"
    if not str(fields.get("description") or "").strip():
        return "Product description is required"
    try:
        price = float(fields.get("price"))
    except (TypeError, ValueError):
        return "Please enter a valid price"
    if price < 0 or not math.isfinite(price):
        return "Please enter a valid price"
    if not fields.get("category"):
        return "Please select a category"
    if not fields.get("subCategory"):
        return "Please select a subcategory"
    if not any(images.get(slot) for slot in IMAGE_FIELDS):
        return "At least one product image is required"
    return None


def filter_products(products: Iterable[Dict[str, Any]], search: str = "", categories: Sequence[str] = (),
                    sub_categories: Sequence[str] = (), sort_type: str = "relevant") -> List[Dict[str, Any]]:
    """Collection page filtering; price sorting lives here, not on the server."""
    items = list(products)
    if search:
        needle = search.lower()
        items = [p for p in items if needle in p.get("name", "").lower()]
    if categories:
        items = [p for p in items if p.get("category") in categories]
    if sub_categories:
        items = [p for p in items if p.get("subCategory") in sub_categories]
    if sort_type == "low-high":
        items.sort(key=lambda p: p.get("price", 0))
    elif sort_type == "high-low":
        items.sort(key=lambda p: p.get("price", 0), reverse=True)
    return items
