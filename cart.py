"""
Cart and wishlist.

A cart maps listing id -> {size label -> quantity}. The pure helpers at the top
are used both by the server store below and by the client cache in
``storefront`` so the two always agree on what a quantity change means.
"""
from typing import Any, Dict, Iterable, List

from pymongo.database import Database

from database import as_object_id
from errors import NotFoundError, ValidationError


Cart = Dict[str, Dict[str, int]]


def increment(cart: Cart, item_id: str, size: str) -> Cart:
    if not size:
        raise ValidationError("Select Product Size")
    updated = {key: dict(sizes) for key, sizes in cart.items()}
    sizes = updated.setdefault(item_id, {})
    sizes[size] = sizes.get(size, 0) + 1
    return updated


def apply_quantity(cart: Cart, item_id: str, size: str, quantity: int) -> Cart:
    """Return a copy of ``cart`` with (item_id, size) set to ``quantity``.

    Zero removes the size, and the item once it has no sizes left.
    """
    if not size:
        raise ValidationError("Select Product Size")
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    updated = {key: dict(sizes) for key, sizes in cart.items()}
    if quantity == 0:
        if item_id in updated:
            updated[item_id].pop(size, None)
            if not updated[item_id]:
                del updated[item_id]
    else:
        updated.setdefault(item_id, {})[size] = quantity
    return updated


def cart_count(cart: Cart) -> int:
    return sum(qty or 0 for sizes in cart.values() for qty in sizes.values())


def cart_amount(cart: Cart, products: Iterable[Dict[str, Any]]) -> float:
    """Sum of price x quantity using the prices in ``products``.

    Items missing from ``products`` add nothing to the total.
    """
    prices = {p["_id"]: p.get("price", 0) for p in products}
    total = 0.0
    for item_id, sizes in cart.items():
        if item_id not in prices:
            continue
        for qty in sizes.values():
            total += prices[item_id] * qty
    return total


# Server-side store: both structures live on the user document.

def _user(database: Database, user_id: str) -> Dict[str, Any]:
    user = database["user"].find_one({"_id": as_object_id(user_id)})
    if user is None:
        raise NotFoundError("User not found")
    return user


def _ensure_listing(database: Database, item_id: str) -> None:
    oid = as_object_id(item_id)
    if oid is None or database["product"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFoundError()


def get_cart(database: Database, user_id: str) -> Cart:
    return _user(database, user_id).get("cart_data", {})


def add_to_cart(database: Database, user_id: str, item_id: str, size: str) -> Cart:
    _ensure_listing(database, item_id)
    cart = increment(get_cart(database, user_id), item_id, size)
    database["user"].update_one({"_id": as_object_id(user_id)}, {"$set": {"cart_data": cart}})
    return cart


def update_cart(database: Database, user_id: str, item_id: str, size: str, quantity: int) -> Cart:
    cart = apply_quantity(get_cart(database, user_id), item_id, size, quantity)
    database["user"].update_one({"_id": as_object_id(user_id)}, {"$set": {"cart_data": cart}})
    return cart


def get_wishlist(database: Database, user_id: str) -> List[str]:
    return _user(database, user_id).get("wishlist", [])


def add_to_wishlist(database: Database, user_id: str, product_id: str) -> List[str]:
    _ensure_listing(database, product_id)
    wishlist = get_wishlist(database, user_id)
    if product_id not in wishlist:
        wishlist = wishlist + [product_id]
        database["user"].update_one({"_id": as_object_id(user_id)}, {"$set": {"wishlist": wishlist}})
    return wishlist


def remove_from_wishlist(database: Database, user_id: str, product_id: str) -> List[str]:
    wishlist = [pid for pid in get_wishlist(database, user_id) if pid != product_id]
    database["user"].update_one({"_id": as_object_id(user_id)}, {"$set": {"wishlist": wishlist}})
    return wishlist
