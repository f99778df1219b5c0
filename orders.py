"""
Order lifecycle: placement, cancellation and status changes.

Status changes are checked against one transition table and applied with a
conditional update on the status that was read, so two requests can never
both move an order out of the same state.

Placement reserves stock for every line before the order is written. If any
reservation fails, the lines already reserved are put back and nothing else
is written. Cancellation puts stock back line by line; a line that cannot be
restored is logged and the remaining lines are still attempted.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import carts
import inventory
from auth import is_admin
from database import create_document, oid, paginate, utcnow
from errors import (
    EmptyOrder,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    ProductInactive,
    StoreError,
    Unexpected,
)
from notifications import EmailSender, notify_order_confirmation

logger = structlog.get_logger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.PROCESSING}


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in _VALID_TRANSITIONS[OrderStatus(current)]


@dataclass
class RestockOutcome:
    product_id: str
    quantity: int
    restored: bool
    error: Optional[str] = None


def restore_items(db: Database, items: List[dict]) -> List[RestockOutcome]:
    """Put every line's quantity back. Failures are collected, never raised."""
    outcomes = []
    for item in items:
        try:
            inventory.restore(
                db,
                item["product_id"],
                item["quantity"],
                size=item.get("selected_size"),
                color=item.get("selected_color"),
                name=item.get("name"),
            )
        except (StoreError, PyMongoError) as exc:
            logger.error("stock restore failed", product_id=item["product_id"], quantity=item["quantity"],
                         error=str(exc))
            outcomes.append(RestockOutcome(item["product_id"], item["quantity"], False, str(exc)))
        else:
            outcomes.append(RestockOutcome(item["product_id"], item["quantity"], True))
    return outcomes


def shipping_snapshot(address: dict) -> dict:
    """Copy the address into the order; district/thana are accepted for city/postal code."""
    return {
        "full_name": address.get("full_name"),
        "address": address.get("address"),
        "city": address.get("district") or address.get("city"),
        "postal_code": address.get("thana") or address.get("postal_code"),
        "country": address.get("country") or "Bangladesh",
        "phone": address.get("phone"),
    }


def _validate_items(db: Database, items: List[dict]) -> List[dict]:
    products = []
    for item in items:
        product = inventory.load_product(db, item["product_id"], item["name"])
        if not product.get("is_active", True):
            raise ProductInactive(item["name"])
        size, color = item.get("selected_size"), item.get("selected_color")
        availability = inventory.check_available(product, size, color, item["quantity"])
        if not availability.ok:
            raise InsufficientStock(item["name"], item["quantity"], availability.available, availability.variant)
        products.append(product)
    return products


def _reserve(db: Database, items: List[dict]) -> None:
    reserved = []
    try:
        for item in items:
            inventory.decrement(
                db,
                item["product_id"],
                item["quantity"],
                size=item.get("selected_size"),
                color=item.get("selected_color"),
                name=item["name"],
            )
            reserved.append(item)
    except (StoreError, PyMongoError):
        logger.warning("releasing reserved stock", reserved=len(reserved), requested=len(items))
        restore_items(db, reserved)
        raise


def _snapshot_item(item: dict, product: dict) -> dict:
    images = product.get("images") or []
    return {
        "product_id": item["product_id"],
        "name": item.get("name") or product.get("name"),
        "image": item.get("image") or (images[0].get("url") if images else None),
        "price": item["price"],
        "quantity": item["quantity"],
        "selected_size": item.get("selected_size") or None,
        "selected_color": item.get("selected_color") or None,
    }


def _run_now(func: Callable, *args):
    func(*args)


def create_order(db: Database, user: dict, items: List[dict], shipping_address: dict, payment_method: str,
                 prices: dict, notifier: EmailSender, schedule: Optional[Callable] = None) -> dict:
    """Place an order for ``user``.

    ``schedule`` runs the confirmation email; the HTTP layer passes
    ``BackgroundTasks.add_task`` so the mail goes out after the response.
    """
    if not items:
        raise EmptyOrder()

    user_id = str(user["_id"])
    products = _validate_items(db, items)
    _reserve(db, items)

    order = {
        "user_id": user_id,
        "items": [_snapshot_item(item, product) for item, product in zip(items, products)],
        "shipping_address": shipping_snapshot(shipping_address),
        "payment_method": payment_method,
        "items_price": prices.get("items_price", 0),
        "tax_price": prices.get("tax_price", 0),
        "shipping_price": prices.get("shipping_price", 0),
        "total_price": prices.get("total_price", 0),
        "status": OrderStatus.PENDING.value,
        "is_delivered": False,
        "delivered_at": None,
    }
    try:
        order = create_document(db, "order", order)
    except PyMongoError as exc:
        logger.error("order insert failed, releasing stock", user_id=user_id, error=str(exc))
        restore_items(db, items)
        raise Unexpected("Server error creating order") from exc

    try:
        carts.clear(db, user_id)
    except PyMongoError as exc:
        logger.error("cart clear failed after order", order_id=str(order["_id"]), user_id=user_id, error=str(exc))

    (schedule or _run_now)(notify_order_confirmation, notifier, user.get("email"), user.get("name"), order)

    logger.info("order created", order_id=str(order["_id"]), user_id=user_id, items=len(order["items"]),
                total_price=order["total_price"])
    return order


def load_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id, "Order")})
    if not order:
        raise NotFound("Order not found")
    return order


def _apply_transition(db: Database, order: dict, target: OrderStatus, extra: Optional[dict] = None) -> dict:
    current = order["status"]
    if not can_transition(current, target):
        raise InvalidTransition(current, target.value)
    fields = {"status": target.value, "updated_at": utcnow()}
    fields.update(extra or {})
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        latest = db["order"].find_one({"_id": order["_id"]})
        raise InvalidTransition(latest["status"] if latest else current, target.value)
    logger.info("order status changed", order_id=str(order["_id"]), previous=current, status=target.value)
    return updated


def _cancel(db: Database, order: dict) -> dict:
    updated = _apply_transition(db, order, OrderStatus.CANCELLED)
    outcomes = restore_items(db, order["items"])
    failed = [outcome for outcome in outcomes if not outcome.restored]
    if failed:
        logger.warning("order cancelled with unrestored stock", order_id=str(order["_id"]),
                       failed=[outcome.product_id for outcome in failed])
    return updated


def cancel_order(db: Database, order_id: str, user: dict) -> dict:
    order = load_order(db, order_id)
    if order["user_id"] != str(user["_id"]):
        raise Forbidden("Access denied")
    if OrderStatus(order["status"]) not in _CANCELLABLE_STATES:
        raise InvalidTransition(
            order["status"],
            OrderStatus.CANCELLED.value,
            f"Cannot cancel order. Order is already {order['status']}",
        )
    return _cancel(db, order)


def update_status(db: Database, order_id: str, status: str) -> dict:
    order = load_order(db, order_id)
    target = OrderStatus(status)
    if target is OrderStatus.CANCELLED:
        return _cancel(db, order)
    extra = None
    if target is OrderStatus.DELIVERED:
        extra = {"is_delivered": True, "delivered_at": utcnow()}
    return _apply_transition(db, order, target, extra)


def _attach_user(db: Database, order: dict) -> dict:
    try:
        owner = db["user"].find_one({"_id": ObjectId(order["user_id"])}, {"name": 1, "email": 1})
    except (InvalidId, TypeError):
        owner = None
    order["user"] = {"id": order["user_id"], "name": owner.get("name"), "email": owner.get("email")} if owner else None
    return order


def get_order(db: Database, order_id: str, user: dict) -> dict:
    order = load_order(db, order_id)
    if order["user_id"] != str(user["_id"]) and not is_admin(user):
        raise Forbidden("Access denied")
    return _attach_user(db, order)


def get_user_orders(db: Database, user_id: str) -> List[dict]:
    return list(db["order"].find({"user_id": user_id}).sort("created_at", -1))


def get_all_orders(db: Database, page: int = 1, limit: int = 10, status: Optional[str] = None) -> tuple:
    query = {"status": status} if status else {}
    orders, pagination = paginate(db, "order", query, page, limit, sort=[("created_at", -1)])
    return [_attach_user(db, order) for order in orders], pagination
