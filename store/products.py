"""Product catalog: derivation rules, listing queries and stock counters."""
import hashlib
import re
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from database import create_document, get_collection, parse_object_id, utcnow
from errors import DuplicateError, InsufficientStockError, NotFoundError
from pricing import to_money
from schemas import Product

logger = structlog.get_logger(__name__)

SORTS = {
    "newest": [("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "price-asc": [("price", ASCENDING)],
    "price-desc": [("price", DESCENDING)],
    "rating": [("ratings.average", DESCENDING)],
    "popular": [("sales_count", DESCENDING)],
}


def _products():
    return get_collection("product")


def slugify(title: str) -> str:
    return re.sub(r"(^-|-$)", "", re.sub(r"[^a-z0-9]+", "-", title.lower()))


def make_sku(brand: str, title: str) -> str:
    prefix = re.sub(r"[^A-Z0-9]+", "", brand.upper()) or "SKU"
    digest = hashlib.sha1(slugify(title).encode("utf-8")).hexdigest()[:8].upper()
    return f"{prefix}-{digest}"


def derive_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in slug, SKU and original price the way a new product needs them."""
    out = dict(data)
    out["slug"] = slugify(out["title"])
    if not out.get("sku"):
        out["sku"] = make_sku(out["brand"], out["title"])
    discount = out.get("discount") or 0
    if discount > 0 and not out.get("original_price"):
        out["original_price"] = to_money(out["price"] / (1 - discount / 100)) if discount < 100 else None
    out["discount"] = discount
    return out


def primary_image(product: Dict[str, Any]) -> Optional[str]:
    images = product.get("images") or []
    for image in images:
        if image.get("is_primary"):
            return image.get("url")
    return images[0].get("url") if images else None


def is_in_stock(product: Dict[str, Any], quantity: int = 1) -> bool:
    return product.get("stock", 0) >= quantity and product.get("is_active", True)


def _raise_duplicate(exc: DuplicateKeyError):
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    if "slug" in key_pattern:
        raise DuplicateError("Product with this slug already exists")
    raise DuplicateError("Product with this SKU already exists")


# ---------------------- CRUD ----------------------

def create_product(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        product = create_document("product", Product(**derive_fields(data)))
    except DuplicateKeyError as exc:
        _raise_duplicate(exc)
    logger.info("product_created", product_id=str(product["_id"]), sku=product["sku"])
    return product


def update_product(product_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    current = get_product(product_id, active_only=False)
    changes = dict(data)
    if changes.get("title") and changes["title"] != current.get("title"):
        changes["slug"] = slugify(changes["title"])
    if not changes.get("sku"):
        changes.pop("sku", None)
    discount = changes.get("discount")
    if discount is None:
        changes.pop("discount", None)
    elif discount > 0 and not changes.get("original_price") and discount < 100:
        changes["original_price"] = to_money(changes.get("price", current["price"]) / (1 - discount / 100))
    validated = Product(**{**current, **changes}).model_dump()
    updates = {k: validated[k] for k in changes}
    updates["updated_at"] = utcnow()
    try:
        _products().update_one({"_id": current["_id"]}, {"$set": updates})
    except DuplicateKeyError as exc:
        _raise_duplicate(exc)
    logger.info("product_updated", product_id=str(current["_id"]), fields=sorted(changes))
    return get_product(current["_id"], active_only=False)


def deactivate_product(product_id: Any) -> None:
    oid = parse_object_id(product_id)
    res = _products().update_one({"_id": oid}, {"$set": {"is_active": False, "updated_at": utcnow()}}) if oid else None
    if res is None or res.matched_count == 0:
        raise NotFoundError("Product")
    logger.info("product_deactivated", product_id=str(oid))


def get_product(product_id: Any, active_only: bool = True) -> Dict[str, Any]:
    oid = parse_object_id(product_id)
    product = _products().find_one({"_id": oid}) if oid else None
    if not product or (active_only and not product.get("is_active", True)):
        raise NotFoundError("Product")
    return product


def find_by_identifier(identifier: str) -> Dict[str, Any]:
    """Look a product up by id first, then by slug. Inactive products are hidden."""
    product = None
    oid = parse_object_id(identifier)
    if oid is not None:
        product = _products().find_one({"_id": oid})
    if product is None:
        product = _products().find_one({"slug": identifier.lower()})
    if not product or not product.get("is_active", True):
        raise NotFoundError("Product")
    return product


def increment_view_count(product_id: ObjectId) -> None:
    _products().update_one({"_id": product_id}, {"$inc": {"view_count": 1}})


def related_products(product: Dict[str, Any], limit: int = 4) -> List[Dict[str, Any]]:
    cursor = _products().find(
        {"_id": {"$ne": product["_id"]}, "category": product["category"], "is_active": True}
    ).limit(limit)
    return list(cursor)


# ---------------------- Listing ----------------------

def build_filter(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    rating: Optional[float] = None,
    search: Optional[str] = None,
    in_stock: Optional[bool] = None,
    featured: Optional[bool] = None,
) -> Dict[str, Any]:
    filter_q: Dict[str, Any] = {"is_active": True}
    if category:
        filter_q["category"] = category
    if brand:
        filter_q["brand"] = {"$regex": re.escape(brand), "$options": "i"}
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        filter_q["price"] = price_filter
    if rating is not None:
        filter_q["ratings.average"] = {"$gte": rating}
    if in_stock:
        filter_q["stock"] = {"$gt": 0}
    if featured:
        filter_q["is_featured"] = True
    if search:
        pattern = re.escape(search)
        filter_q["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    return filter_q


def list_products(filter_q: Dict[str, Any], sort: str = "newest", page: int = 1, limit: int = 12):
    """Return one page of matching products and the total match count."""
    total = _products().count_documents(filter_q)
    cursor = (
        _products()
        .find(filter_q)
        .sort(SORTS.get(sort, SORTS["newest"]))
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return list(cursor), total


def featured_products(limit: int = 8) -> List[Dict[str, Any]]:
    cursor = _products().find({"is_active": True, "is_featured": True}).sort([("sales_count", DESCENDING)]).limit(limit)
    return list(cursor)


def distinct_values(field: str) -> List[str]:
    return sorted(_products().distinct(field, {"is_active": True}))


def facet_counts(field: str) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": {"is_active": True}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ]
    return [{"name": row["_id"], "count": row["count"]} for row in _products().aggregate(pipeline)]


# ---------------------- Stock ----------------------

def reduce_stock(product_id: ObjectId, quantity: int) -> Dict[str, Any]:
    """Take `quantity` units out of stock and count them as sold.

    The stock check and the decrement are one conditional update, so two
    buyers racing for the last unit cannot both win. On failure nothing is
    written and InsufficientStockError reports what was available.
    """
    if quantity < 1:
        raise ValueError("quantity must be positive")
    res = _products().update_one(
        {"_id": product_id, "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "sales_count": quantity}, "$set": {"updated_at": utcnow()}},
    )
    if res.matched_count == 0:
        product = _products().find_one({"_id": product_id})
        if not product or not product.get("is_active", True):
            raise NotFoundError("Product")
        logger.info("stock_insufficient", product_id=str(product_id), requested=quantity, available=product.get("stock", 0))
        raise InsufficientStockError(str(product_id), quantity, product.get("stock", 0), product.get("title"))
    logger.info("stock_reserved", product_id=str(product_id), quantity=quantity)
    return _products().find_one({"_id": product_id})


def restock(product_id: ObjectId, quantity: int) -> None:
    _products().update_one(
        {"_id": product_id},
        {"$inc": {"stock": quantity, "sales_count": -quantity}, "$set": {"updated_at": utcnow()}},
    )
    logger.info("stock_released", product_id=str(product_id), quantity=quantity)
