import logging
import os
import re
from typing import List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import carts
import database
import inventory
import orders
from auth import get_current_user, get_password_hash, require_admin
from database import create_document, get_db, get_documents, oid, paginate, serialize, utcnow
from errors import NotFound, StoreError, ValidationError
from notifications import EmailSender, get_notifier
from schemas import (
    Address as AddressSchema,
    Category,
    ColorOption,
    InventoryKind,
    OrderStatusValue,
    Product as ProductSchema,
    ProductImage,
    Review as ReviewSchema,
    SizeLabel,
    SizeOption,
    Specifications,
    User as UserSchema,
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FRONTEND_URL = os.getenv("FRONTEND_URL", "*")

structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, LOG_LEVEL, logging.INFO)))
logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses
@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("request failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message, **exc.context()})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail},
                        headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("database error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"message": "Server error"})


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API is running"}


@app.get("/api/health")
def health():
    return {"message": "Server is running!"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    if database.db is not None:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            collections = database.db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


# Accounts
class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = Field(..., min_length=1)


class ProfileIn(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class RoleIn(BaseModel):
    role: str


def user_out(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "role": user.get("role"),
    }


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterIn, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("User already exists")

    user = UserSchema(
        name=payload.name.strip(),
        email=email,
        password_hash=get_password_hash(payload.password),
        phone=payload.phone.strip(),
    )
    doc = create_document(db, "user", user)
    logger.info("user registered", user_id=str(doc["_id"]))
    return {"message": "User registered successfully", "user": user_out(doc)}


@app.get("/api/users/profile")
def get_profile(user=Depends(get_current_user)):
    return serialize(user)


@app.put("/api/users/profile")
def update_profile(payload: ProfileIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    changes = {k: v for k, v in payload.model_dump().items() if v}
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if db["user"].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}}):
            raise ValidationError("Email already in use")
    changes["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    updated = db["user"].find_one({"_id": user["_id"]})
    return {"message": "Profile updated successfully", "user": user_out(updated)}


@app.get("/api/users", dependencies=[Depends(require_admin)])
def list_users(search: Optional[str] = None, role: Optional[str] = None, page: int = 1, limit: int = 10,
               db: Database = Depends(get_db)):
    query = {}
    if search:
        term = re.escape(search.strip())
        query["$or"] = [
            {"name": {"$regex": term, "$options": "i"}},
            {"email": {"$regex": term, "$options": "i"}},
        ]
    if role and role != "all":
        query["role"] = role
    users, pagination = paginate(db, "user", query, page, limit, sort=[("created_at", -1)])
    return {"users": [serialize(u) for u in users], "pagination": pagination}


@app.put("/api/users/{user_id}/role", dependencies=[Depends(require_admin)])
def update_user_role(user_id: str, payload: RoleIn, db: Database = Depends(get_db)):
    if payload.role not in ("user", "admin"):
        raise ValidationError("Invalid role")
    _id = oid(user_id, "User")
    result = db["user"].update_one({"_id": _id}, {"$set": {"role": payload.role, "updated_at": utcnow()}})
    if result.matched_count == 0:
        raise NotFound("User not found")
    user = db["user"].find_one({"_id": _id})
    logger.info("user role updated", user_id=user_id, role=payload.role)
    return {"message": "User role updated successfully", "user": serialize(user)}


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    if user_id == str(admin["_id"]):
        raise ValidationError("Cannot delete your own account")
    result = db["user"].delete_one({"_id": oid(user_id, "User")})
    if result.deleted_count == 0:
        raise NotFound("User not found")
    return {"message": "User deleted successfully"}


# Products
class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    images: Optional[List[ProductImage]] = None
    colors: Optional[List[ColorOption]] = None
    sizes: Optional[List[SizeOption]] = None
    inventory_kind: Optional[InventoryKind] = None
    in_stock: Optional[bool] = None
    stock: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    is_new_arrival: Optional[bool] = None
    is_combo: Optional[bool] = None
    tags: Optional[List[str]] = None
    specifications: Optional[Specifications] = None
    is_active: Optional[bool] = None


# Fields the inventory kind is derived from
KIND_FIELDS = {"category", "sizes", "colors"}

SORT_OPTIONS = {
    "price-low": [("price", 1)],
    "price-high": [("price", -1)],
    "rating": [("rating", -1)],
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "name-asc": [("name", 1)],
    "name-desc": [("name", -1)],
}


def _price_filter(price: Optional[str], min_price: Optional[float], max_price: Optional[float]) -> dict:
    price_filter = {}
    if price and "-" in price:
        try:
            low, high = (float(part) for part in price.split("-", 1))
        except ValueError:
            raise ValidationError("Invalid price range")
        if low:
            price_filter["$gte"] = low
        if high and high != 999999:
            price_filter["$lte"] = high
    else:
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
    return price_filter


@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    color: Optional[str] = None,
    price: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 12,
    db: Database = Depends(get_db),
):
    query = {}
    if category and category.strip() and category != "all":
        query["category"] = {"$regex": f"^{re.escape(category.strip())}$", "$options": "i"}

    clauses = []
    if search and search.strip():
        term = re.escape(search.strip())
        clauses.append({"$or": [
            {"name": {"$regex": term, "$options": "i"}},
            {"description": {"$regex": term, "$options": "i"}},
            {"tags": {"$regex": term, "$options": "i"}},
        ]})
    if color and color.strip():
        term = re.escape(color.strip())
        clauses.append({"$or": [
            {"colors.name": {"$regex": term, "$options": "i"}},
            {"specifications.color": {"$regex": term, "$options": "i"}},
        ]})
    if clauses:
        query["$and"] = clauses

    price_filter = _price_filter(price, min_price, max_price)
    if price_filter:
        query["price"] = price_filter

    sort_spec = SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"])
    products, pagination = paginate(db, "product", query, page, limit, sort=sort_spec)
    logger.debug("products listed", query=str(query), count=len(products), total=pagination["total"])
    return {"success": True, "products": [serialize(p) for p in products], "pagination": pagination}


@app.get("/api/products/featured/list")
def featured_products(db: Database = Depends(get_db)):
    products = get_documents(db, "product", {"featured": True}, sort=[("rating", -1)], limit=8)
    return [serialize(p) for p in products]


@app.get("/api/products/new-arrivals/list")
def new_arrivals(db: Database = Depends(get_db)):
    products = get_documents(db, "product", {"is_new_arrival": True}, sort=[("created_at", -1)], limit=8)
    return [serialize(p) for p in products]


@app.get("/api/products/combos/list")
def combos(db: Database = Depends(get_db)):
    products = get_documents(db, "product", {"is_combo": True}, sort=[("created_at", -1)], limit=6)
    return [serialize(p) for p in products]


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = db["product"].find_one({"_id": oid(product_id, "Product")})
    if not product:
        raise NotFound("Product not found")
    return serialize(product)


@app.post("/api/products", status_code=201)
def create_product(payload: ProductSchema, admin=Depends(require_admin), db: Database = Depends(get_db)):
    data = payload.model_dump()
    data["inventory_kind"] = inventory.inventory_kind(data)
    data["version"] = 0
    data["created_by"] = str(admin["_id"])
    product = create_document(db, "product", data)
    logger.info("product created", product_id=str(product["_id"]), inventory_kind=data["inventory_kind"])
    return {"message": "Product created successfully", "product": serialize(product)}


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
    _id = oid(product_id, "Product")
    changes = payload.model_dump(exclude_unset=True)
    if "inventory_kind" not in changes and KIND_FIELDS & changes.keys():
        current = db["product"].find_one({"_id": _id})
        if not current:
            raise NotFound("Product not found")
        changes["inventory_kind"] = inventory.derive_inventory_kind({**current, **changes})
    changes["updated_at"] = utcnow()
    # Bumping the version makes in-flight stock writes re-read the product
    result = db["product"].update_one({"_id": _id}, {"$set": changes, "$inc": {"version": 1}})
    if result.matched_count == 0:
        raise NotFound("Product not found")
    return {"message": "Product updated successfully", "product": serialize(db["product"].find_one({"_id": _id}))}


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    result = db["product"].delete_one({"_id": oid(product_id, "Product")})
    if result.deleted_count == 0:
        raise NotFound("Product not found")
    return {"message": "Product deleted successfully"}


# Cart endpoints (per-user)
class CartAddIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_size: Optional[SizeLabel] = None
    selected_color: Optional[str] = None


class CartUpdateIn(BaseModel):
    item_id: str
    quantity: int


PRODUCT_SUMMARY = {"name": 1, "price": 1, "images": 1, "category": 1, "sizes": 1, "colors": 1, "stock": 1}


def cart_out(db: Database, cart: Optional[dict]) -> dict:
    if cart is None:
        return {"id": None, "items": [], "total_amount": 0, "total_items": 0}
    ids = []
    for item in cart["items"]:
        if ObjectId.is_valid(item["product_id"]):
            ids.append(ObjectId(item["product_id"]))
    products = {str(p["_id"]): serialize(p) for p in db["product"].find({"_id": {"$in": ids}}, PRODUCT_SUMMARY)}
    items = [{**item, "product": products.get(item["product_id"])} for item in cart["items"]]
    return {
        "id": str(cart["_id"]),
        "items": items,
        "total_amount": cart["total_amount"],
        "total_items": cart["total_items"],
    }


@app.get("/api/cart")
def get_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.get_cart(db, str(user["_id"]))
    return {"success": True, "data": cart_out(db, cart)}


@app.post("/api/cart/add")
def add_to_cart(payload: CartAddIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.add_item(db, str(user["_id"]), payload.product_id, payload.quantity,
                          payload.selected_size, payload.selected_color)
    return {"success": True, "message": "Item added to cart", "data": cart_out(db, cart)}


@app.put("/api/cart/update")
def update_cart_item(payload: CartUpdateIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.update_quantity(db, str(user["_id"]), payload.item_id, payload.quantity)
    return {"success": True, "message": "Cart updated", "data": cart_out(db, cart)}


@app.delete("/api/cart/remove/{item_id}")
def remove_from_cart(item_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.remove_item(db, str(user["_id"]), item_id)
    return {"success": True, "message": "Item removed from cart", "data": cart_out(db, cart)}


@app.delete("/api/cart/clear")
def clear_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = carts.clear(db, str(user["_id"]))
    return {"success": True, "message": "Cart cleared", "data": cart_out(db, cart)}


# Orders
class OrderItemIn(BaseModel):
    product_id: str
    name: str
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None


class ShippingAddressIn(BaseModel):
    full_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    city: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None
    thana: Optional[str] = None
    country: Optional[str] = None


class OrderIn(BaseModel):
    order_items: List[OrderItemIn] = []
    shipping_address: ShippingAddressIn
    payment_method: str = Field(..., min_length=1)
    items_price: float = Field(0, ge=0)
    tax_price: float = Field(0, ge=0)
    shipping_price: float = Field(0, ge=0)
    total_price: float = Field(0, ge=0)


class StatusIn(BaseModel):
    status: OrderStatusValue


@app.get("/api/orders", dependencies=[Depends(require_admin)])
def list_orders(page: int = 1, limit: int = 10, status: Optional[OrderStatusValue] = None,
                db: Database = Depends(get_db)):
    items, pagination = orders.get_all_orders(db, page, limit, status)
    return {"orders": [serialize(o) for o in items], "pagination": pagination}


@app.post("/api/orders", status_code=201)
def create_order(
    payload: OrderIn,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: EmailSender = Depends(get_notifier),
):
    order = orders.create_order(
        db,
        user,
        [item.model_dump() for item in payload.order_items],
        payload.shipping_address.model_dump(),
        payload.payment_method,
        payload.model_dump(include={"items_price", "tax_price", "shipping_price", "total_price"}),
        notifier,
        schedule=background_tasks.add_task,
    )
    return serialize(order)


@app.get("/api/orders/my")
def my_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return [serialize(o) for o in orders.get_user_orders(db, str(user["_id"]))]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(orders.get_order(db, order_id, user))


@app.put("/api/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: StatusIn, db: Database = Depends(get_db)):
    return serialize(orders.update_status(db, order_id, payload.status))


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.cancel_order(db, order_id, user)
    return {"message": "Order cancelled successfully. Product stock has been restored.", "order": serialize(order)}


# Addresses
class AddressIn(BaseModel):
    full_name: str
    phone: str
    address: str
    district: str
    thana: str
    country: str = "Bangladesh"
    is_default: bool = False


class AddressUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)
    district: Optional[str] = Field(None, min_length=1)
    thana: Optional[str] = Field(None, min_length=1)
    country: Optional[str] = None
    is_default: Optional[bool] = None


def _owned_address(db: Database, address_id: str, user: dict) -> dict:
    address = db["address"].find_one({"_id": oid(address_id, "Address"), "user_id": str(user["_id"])})
    if not address:
        raise NotFound("Address not found")
    return address


def _unset_other_defaults(db: Database, user_id: str, keep_id: ObjectId):
    db["address"].update_many({"user_id": user_id, "_id": {"$ne": keep_id}}, {"$set": {"is_default": False}})


@app.get("/api/addresses")
def list_addresses(user=Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = get_documents(db, "address", {"user_id": str(user["_id"])},
                              sort=[("is_default", -1), ("created_at", -1)])
    return [serialize(a) for a in addresses]


@app.post("/api/addresses", status_code=201)
def create_address(payload: AddressIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    address = create_document(db, "address", AddressSchema(user_id=user_id, **payload.model_dump()))
    if address["is_default"]:
        _unset_other_defaults(db, user_id, address["_id"])
    return {"message": "Address created successfully", "address": serialize(address)}


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, payload: AddressUpdate, user=Depends(get_current_user),
                   db: Database = Depends(get_db)):
    address = _owned_address(db, address_id, user)
    changes = payload.model_dump(exclude_unset=True)
    changes["updated_at"] = utcnow()
    db["address"].update_one({"_id": address["_id"]}, {"$set": changes})
    if changes.get("is_default"):
        _unset_other_defaults(db, str(user["_id"]), address["_id"])
    updated = db["address"].find_one({"_id": address["_id"]})
    return {"message": "Address updated successfully", "address": serialize(updated)}


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    address = _owned_address(db, address_id, user)
    db["address"].delete_one({"_id": address["_id"]})
    return {"message": "Address deleted successfully"}


@app.put("/api/addresses/{address_id}/default")
def set_default_address(address_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    address = _owned_address(db, address_id, user)
    _unset_other_defaults(db, str(user["_id"]), address["_id"])
    db["address"].update_one({"_id": address["_id"]}, {"$set": {"is_default": True, "updated_at": utcnow()}})
    updated = db["address"].find_one({"_id": address["_id"]})
    return {"message": "Default address updated successfully", "address": serialize(updated)}


# Reviews
class ReviewIn(BaseModel):
    product_id: Optional[str] = None
    order_id: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    images: List[str] = []


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)
    images: Optional[List[str]] = None


def _review_out(db: Database, review: dict) -> dict:
    out = serialize(review)
    try:
        author = db["user"].find_one({"_id": ObjectId(review["user_id"])}, {"name": 1})
    except (InvalidId, TypeError):
        author = None
    out["user"] = {"id": review["user_id"], "name": author.get("name")} if author else None
    return out


def _owned_review(db: Database, review_id: str, user: dict) -> dict:
    review = db["review"].find_one({"_id": oid(review_id, "Review"), "user_id": str(user["_id"])})
    if not review:
        raise NotFound("Review not found")
    return review


@app.get("/api/reviews/product/{product_id}")
def product_reviews(product_id: str, page: int = 1, limit: int = 10, db: Database = Depends(get_db)):
    query = {"product_id": product_id, "is_active": True}
    reviews, pagination = paginate(db, "review", query, page, limit, sort=[("created_at", -1)])
    return {
        "reviews": [_review_out(db, r) for r in reviews],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": pagination["total"],
            "pages": pagination["total_pages"],
        },
    }


@app.post("/api/reviews", status_code=201)
def create_review(payload: ReviewIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not payload.product_id or not payload.order_id or not payload.rating:
        raise ValidationError("Product ID, Order ID, and rating are required")

    user_id = str(user["_id"])
    if not ObjectId.is_valid(payload.order_id):
        raise ValidationError("Order not found or not delivered")
    order = db["order"].find_one({
        "_id": ObjectId(payload.order_id),
        "user_id": user_id,
        "status": orders.OrderStatus.DELIVERED.value,
    })
    if not order:
        raise ValidationError("Order not found or not delivered")
    if not any(item["product_id"] == payload.product_id for item in order["items"]):
        raise ValidationError("Product not found in this order")

    key = {"user_id": user_id, "product_id": payload.product_id, "order_id": payload.order_id}
    if db["review"].find_one(key):
        raise ValidationError("You have already reviewed this product")

    review = ReviewSchema(
        **key,
        rating=payload.rating,
        title=payload.title,
        comment=payload.comment,
        images=payload.images,
        is_verified=True,
    )
    doc = create_document(db, "review", review)
    return _review_out(db, doc)


@app.put("/api/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, user=Depends(get_current_user),
                  db: Database = Depends(get_db)):
    review = _owned_review(db, review_id, user)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    changes["updated_at"] = utcnow()
    db["review"].update_one({"_id": review["_id"]}, {"$set": changes})
    return _review_out(db, db["review"].find_one({"_id": review["_id"]}))


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    review = _owned_review(db, review_id, user)
    db["review"].delete_one({"_id": review["_id"]})
    return {"message": "Review deleted successfully"}


@app.get("/api/reviews/my")
def my_reviews(user=Depends(get_current_user), db: Database = Depends(get_db)):
    reviews = get_documents(db, "review", {"user_id": str(user["_id"])}, sort=[("created_at", -1)])
    out = []
    for review in reviews:
        item = serialize(review)
        product = db["product"].find_one({"_id": oid(review["product_id"], "Product")},
                                         {"name": 1, "images": 1, "price": 1})
        item["product"] = serialize(product)
        out.append(item)
    return out


@app.get("/api/reviews/reviewable")
def reviewable_products(user=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    delivered = get_documents(db, "order", {"user_id": user_id, "status": orders.OrderStatus.DELIVERED.value})
    reviewable = []
    for order in delivered:
        for item in order["items"]:
            product = None
            if ObjectId.is_valid(item["product_id"]):
                product = db["product"].find_one({"_id": ObjectId(item["product_id"])})
            if not product:
                continue
            reviewed = db["review"].find_one(
                {"user_id": user_id, "product_id": item["product_id"], "order_id": str(order["_id"])}
            )
            if reviewed:
                continue
            reviewable.append({
                "order_id": str(order["_id"]),
                "product": {
                    "id": item["product_id"],
                    "name": product.get("name") or item["name"],
                    "images": product.get("images") or [],
                    "price": product.get("price", item["price"]),
                },
                "quantity": item["quantity"],
                "price": item["price"],
                "delivered_at": order.get("delivered_at") or order.get("updated_at"),
            })
    return reviewable


@app.get("/api/reviews/check/{product_id}/{order_id}")
def check_review(product_id: str, order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    review = db["review"].find_one({"user_id": str(user["_id"]), "product_id": product_id, "order_id": order_id})
    return {"exists": review is not None, "review": serialize(review)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
