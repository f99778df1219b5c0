"""Per-user shopping cart."""
from typing import Optional

import structlog
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

import inventory
from database import utcnow
from errors import InsufficientStock, NotFound, ValidationError

logger = structlog.get_logger(__name__)


def with_totals(cart: dict) -> dict:
    items = cart.get("items") or []
    cart["total_items"] = sum(item["quantity"] for item in items)
    cart["total_amount"] = round(sum(item["price"] * item["quantity"] for item in items), 2)
    return cart


def _find(db: Database, user_id: str) -> Optional[dict]:
    return db["cart"].find_one({"user_id": user_id})


def _save(db: Database, cart: dict) -> dict:
    with_totals(cart)
    cart["updated_at"] = utcnow()
    db["cart"].replace_one({"_id": cart["_id"]}, cart)
    return cart


def _find_item(cart: dict, item_id: str) -> Optional[dict]:
    return next((item for item in cart["items"] if item["id"] == item_id), None)


def get_cart(db: Database, user_id: str) -> dict:
    """Return the user's cart, creating an empty one on first use."""
    now = utcnow()
    cart = db["cart"].find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {"user_id": user_id, "items": [], "total_amount": 0, "total_items": 0,
                          "created_at": now, "updated_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return with_totals(cart)


def add_item(db: Database, user_id: str, product_id: str, quantity: int = 1,
             size: Optional[str] = None, color: Optional[str] = None) -> dict:
    size = size or None
    color = color or None
    product = inventory.load_product(db, product_id)
    availability = inventory.check_available(product, size, color, quantity)
    if not availability.selectable:
        raise ValidationError(f"Selected {availability.kind} is not available")
    if not availability.ok:
        raise InsufficientStock(product["name"], quantity, availability.available, availability.variant)

    cart = get_cart(db, user_id)
    existing = next(
        (
            item for item in cart["items"]
            if item["product_id"] == product_id
            and item.get("selected_size") == size
            and item.get("selected_color") == color
        ),
        None,
    )
    if existing:
        new_quantity = existing["quantity"] + quantity
        if new_quantity > availability.available:
            raise InsufficientStock(product["name"], new_quantity, availability.available, availability.variant)
        existing["quantity"] = new_quantity
    else:
        cart["items"].append({
            "id": str(ObjectId()),
            "product_id": product_id,
            "quantity": quantity,
            "selected_size": size,
            "selected_color": color,
            "price": product["price"],
            "added_at": utcnow(),
        })

    logger.info("cart item added", user_id=user_id, product_id=product_id, quantity=quantity,
                size=size, color=color, merged=existing is not None)
    return _save(db, cart)


def update_quantity(db: Database, user_id: str, item_id: str, quantity: int) -> dict:
    cart = _find(db, user_id)
    if not cart:
        raise NotFound("Cart not found")
    item = _find_item(cart, item_id)
    if item is None:
        raise NotFound("Item not found in cart")
    if quantity <= 0:
        cart["items"].remove(item)
    else:
        item["quantity"] = quantity
    return _save(db, cart)


def remove_item(db: Database, user_id: str, item_id: str) -> dict:
    cart = _find(db, user_id)
    if not cart:
        raise NotFound("Cart not found")
    cart["items"] = [item for item in cart["items"] if item["id"] != item_id]
    return _save(db, cart)


def clear(db: Database, user_id: str) -> Optional[dict]:
    cart = _find(db, user_id)
    if not cart:
        return None
    cart["items"] = []
    return _save(db, cart)
