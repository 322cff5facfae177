from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query

from database import paginate, parse_object_id, serialize
from errors import NotFoundError
from schemas import ProductIn, ReviewIn
from security import get_current_user, get_optional_user, require_admin
from store import products as product_store
from store import reviews as review_store

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: Literal["newest", "oldest", "price-asc", "price-desc", "rating", "popular"] = "newest",
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    rating: Optional[float] = Query(None, ge=1, le=5),
    search: Optional[str] = None,
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    featured: Optional[bool] = None,
):
    filter_q = product_store.build_filter(
        category=category,
        brand=brand,
        min_price=min_price,
        max_price=max_price,
        rating=rating,
        search=search,
        in_stock=in_stock,
        featured=featured,
    )
    products, total = product_store.list_products(filter_q, sort, page, limit)
    return {
        "products": serialize(products),
        "pagination": paginate(page, limit, total),
        "filters": {
            "categories": product_store.distinct_values("category"),
            "brands": product_store.distinct_values("brand"),
        },
    }


@router.get("/featured")
def featured_products():
    return {"products": serialize(product_store.featured_products())}


@router.get("/meta/categories")
def categories():
    return {"categories": product_store.facet_counts("category")}


@router.get("/meta/brands")
def brands():
    return {"brands": product_store.facet_counts("brand")}


@router.get("/{identifier}")
def get_product(identifier: str):
    product = product_store.find_by_identifier(identifier)
    product_store.increment_view_count(product["_id"])
    product["view_count"] = product.get("view_count", 0) + 1
    return {
        "product": serialize(product),
        "related_products": serialize(product_store.related_products(product)),
    }


@router.post("", status_code=201)
def create_product(payload: ProductIn, admin: Dict[str, Any] = Depends(require_admin)):
    product = product_store.create_product(payload.model_dump())
    return {"message": "Product created successfully", "product": serialize(product)}


@router.put("/{product_id}")
def update_product(product_id: str, payload: ProductIn, admin: Dict[str, Any] = Depends(require_admin)):
    product = product_store.update_product(product_id, payload.model_dump())
    return {"message": "Product updated successfully", "product": serialize(product)}


@router.delete("/{product_id}")
def delete_product(product_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    product_store.deactivate_product(product_id)
    return {"message": "Product deleted successfully"}


# Reviews

@router.post("/{product_id}/reviews", status_code=201)
def add_review(product_id: str, payload: ReviewIn, current: Dict[str, Any] = Depends(get_current_user)):
    product = product_store.get_product(product_id)
    review = review_store.create_review(product, current, payload.model_dump())
    return {"message": "Review added successfully", "review": review_store.public_review(review)}


@router.get("/{product_id}/reviews")
def get_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: Literal["newest", "oldest", "highest", "lowest", "helpful"] = "newest",
    viewer: Optional[Dict[str, Any]] = Depends(get_optional_user),
):
    product = product_store.get_product(product_id)
    reviews = review_store.list_reviews(product["_id"], sort)
    skip = (page - 1) * limit
    viewer_id = str(viewer["_id"]) if viewer else None
    return {
        "reviews": [review_store.public_review(r, viewer_id) for r in reviews[skip:skip + limit]],
        "ratings": product.get("ratings", review_store.rating_summary([])),
        "pagination": paginate(page, limit, len(reviews)),
    }


@router.post("/{product_id}/reviews/{review_id}/helpful")
def toggle_helpful(product_id: str, review_id: str, current: Dict[str, Any] = Depends(get_current_user)):
    product = product_store.get_product(product_id)
    review = review_store.get_review(review_id)
    if review["product_id"] != str(product["_id"]):
        raise NotFoundError("Review")
    is_helpful, count = review_store.toggle_helpful(parse_object_id(review_id), str(current["_id"]))
    return {
        "message": "Review helpful status updated",
        "helpful_count": count,
        "is_helpful": is_helpful,
    }
