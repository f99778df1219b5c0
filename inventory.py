"""
Stock bookkeeping for products.

A product keeps its stock in one of three shapes: a flat ``stock`` count,
per-size entries (``sizes``) or per-color entries (``colors``). ``resolve``
picks the shape that applies to a line item and returns an object exposing
the same small interface for all three.

Writes never patch single fields. The whole product document is replaced,
conditional on its ``version`` being the one that was read, so a stock check
and the decrement that follows it happen against the same state. A lost race
re-reads the product and checks again.
"""
from dataclasses import dataclass
from typing import Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.database import Database

from database import utcnow
from errors import InsufficientStock, ProductNotFound, Unexpected

logger = structlog.get_logger(__name__)

MAX_WRITE_ATTEMPTS = 5

# Category whose products were historically stocked per size
SIZED_CATEGORY = "bangles"


@dataclass(frozen=True)
class Availability:
    ok: bool
    available: int
    selectable: bool = True
    kind: str = "flat"
    variant: Optional[str] = None


class FlatStock:
    kind = "flat"

    def __init__(self, product: dict):
        self.product = product

    def describe(self) -> Optional[str]:
        return None

    def availability(self, requested: int) -> Availability:
        stock = self.product.get("stock", 0)
        return Availability(ok=stock >= requested, available=stock)

    def take(self, qty: int) -> bool:
        self.product["stock"] = self.product.get("stock", 0) - qty
        return True

    def put_back(self, qty: int) -> bool:
        self.product["stock"] = self.product.get("stock", 0) + qty
        return True


class _VariantStock:
    field = ""
    key = ""
    label = ""

    def __init__(self, product: dict, selected: str):
        self.product = product
        self.selected = selected

    def _entry(self) -> Optional[dict]:
        for entry in self.product.get(self.field) or []:
            if entry.get(self.key) == self.selected:
                return entry
        return None

    def describe(self) -> str:
        return f"{self.label}: {self.selected}"

    def availability(self, requested: int) -> Availability:
        entry = self._entry()
        if entry is None or not entry.get("available", True):
            return Availability(ok=False, available=0, selectable=False,
                                kind=self.kind, variant=self.describe())
        stock = entry.get("stock", 0)
        return Availability(ok=stock >= requested, available=stock,
                            kind=self.kind, variant=self.describe())

    def take(self, qty: int) -> bool:
        entry = self._entry()
        if entry is None:
            return False
        entry["stock"] = entry.get("stock", 0) - qty
        entry["available"] = entry["stock"] > 0
        return True

    def put_back(self, qty: int) -> bool:
        entry = self._entry()
        if entry is None:
            return False
        entry["stock"] = entry.get("stock", 0) + qty
        self._mark_restocked(entry)
        return True

    def _mark_restocked(self, entry: dict):
        raise NotImplementedError


class SizeStock(_VariantStock):
    kind = "size"
    field = "sizes"
    key = "size"
    label = "Size"

    def _mark_restocked(self, entry: dict):
        # Restocking a size always reopens it, whatever the resulting count.
        entry["available"] = True


class ColorStock(_VariantStock):
    kind = "color"
    field = "colors"
    key = "name"
    label = "Color"

    def _mark_restocked(self, entry: dict):
        entry["available"] = entry["stock"] > 0


def derive_inventory_kind(product: dict) -> str:
    """The kind implied by category and variants, ignoring any stored value."""
    if product.get("category") == SIZED_CATEGORY and product.get("sizes"):
        return "size"
    if product.get("colors"):
        return "color"
    return "flat"


def inventory_kind(product: dict) -> str:
    """Which stock field is authoritative for ``product``.

    Products store it explicitly; older documents without the field fall back
    to the category/variant rule they were created under.
    """
    return product.get("inventory_kind") or derive_inventory_kind(product)


def resolve(product: dict, size: Optional[str] = None, color: Optional[str] = None):
    """Stock record for a selection: the size entry, then the color entry, then the flat count.

    Products of kind ``flat`` always use the flat count.
    """
    kind = inventory_kind(product)
    if kind == "size" and size:
        return SizeStock(product, size)
    if kind != "flat" and color and product.get("colors"):
        return ColorStock(product, color)
    return FlatStock(product)


def check_available(product: dict, size: Optional[str], color: Optional[str], requested: int) -> Availability:
    return resolve(product, size, color).availability(requested)


def load_product(db: Database, product_id: str, name: Optional[str] = None) -> dict:
    try:
        product = db["product"].find_one({"_id": ObjectId(product_id)})
    except (InvalidId, TypeError):
        product = None
    if not product:
        raise ProductNotFound(name or str(product_id))
    return product


def _commit(db: Database, product: dict) -> bool:
    version = product.get("version")
    product["version"] = (version or 0) + 1
    product["updated_at"] = utcnow()
    result = db["product"].replace_one({"_id": product["_id"], "version": version}, product)
    return result.matched_count == 1


def decrement(db: Database, product_id: str, qty: int, size: Optional[str] = None,
              color: Optional[str] = None, name: Optional[str] = None) -> dict:
    """Take ``qty`` units off the resolved stock entry, or raise InsufficientStock."""
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        product = load_product(db, product_id, name)
        stock = resolve(product, size, color)
        availability = stock.availability(qty)
        if not availability.ok:
            raise InsufficientStock(name or product.get("name"), qty, availability.available, stock.describe())
        stock.take(qty)
        if _commit(db, product):
            logger.info("stock decremented", product_id=str(product_id), kind=stock.kind,
                        variant=stock.describe(), quantity=qty)
            return product
        logger.info("stock write conflict", product_id=str(product_id), attempt=attempt)
    raise Unexpected(f"Could not update stock for {name or product_id}")


def restore(db: Database, product_id: str, qty: int, size: Optional[str] = None,
            color: Optional[str] = None, name: Optional[str] = None) -> dict:
    """Put ``qty`` units back on the resolved stock entry."""
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        product = load_product(db, product_id, name)
        stock = resolve(product, size, color)
        if not stock.put_back(qty):
            logger.warning("no stock entry to restore", product_id=str(product_id), variant=stock.describe())
            return product
        if _commit(db, product):
            logger.info("stock restored", product_id=str(product_id), kind=stock.kind,
                        variant=stock.describe(), quantity=qty)
            return product
        logger.info("stock write conflict", product_id=str(product_id), attempt=attempt)
    raise Unexpected(f"Could not restore stock for {name or product_id}")
