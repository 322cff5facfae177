"""Product reviews and the rating aggregate derived from them.

Reviews live only in the ``review`` collection. The ``ratings`` field on a
product is a cache of `rating_summary` over its approved reviews, rewritten
after every change that can move it.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import as_utc, compare_and_swap, create_document, get_collection, parse_object_id, serialize, utcnow
from errors import DuplicateError, NotFoundError, PermissionDeniedError
from pricing import round_half_up
from schemas import Review

logger = structlog.get_logger(__name__)

REVIEW_SORTS = ("newest", "oldest", "highest", "lowest", "helpful")


def _reviews():
    return get_collection("review")


def rating_summary(ratings: Iterable[int]) -> Dict[str, Any]:
    ratings = list(ratings)
    if not ratings:
        return {"average": 0.0, "count": 0}
    return {"average": round_half_up(sum(ratings) / len(ratings), 1), "count": len(ratings)}


def refresh_product_ratings(product_id: ObjectId) -> Dict[str, Any]:
    """Recompute the cached ratings from approved reviews.

    The write is versioned on the product, so a summary computed from a
    review set that has since changed is recomputed instead of stored.
    """
    def mutate(product):
        cursor = _reviews().find({"product_id": str(product_id), "is_approved": True}, {"rating": 1})
        return {"ratings": rating_summary([r["rating"] for r in cursor])}

    product = compare_and_swap("product", product_id, mutate)
    if product is None:
        raise NotFoundError("Product")
    summary = product["ratings"]
    logger.info("ratings_refreshed", product_id=str(product_id), **summary)
    return summary


def get_review(review_id: Any) -> Dict[str, Any]:
    oid = parse_object_id(review_id)
    review = _reviews().find_one({"_id": oid}) if oid else None
    if not review:
        raise NotFoundError("Review")
    return review


def has_purchased(user_id: str, product_id: str) -> bool:
    return get_collection("order").count_documents(
        {"user_id": user_id, "status": "delivered", "items.product_id": product_id}
    ) > 0


def create_review(product: Dict[str, Any], user: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    product_id = str(product["_id"])
    user_id = str(user["_id"])
    if _reviews().find_one({"product_id": product_id, "user_id": user_id}):
        raise DuplicateError("You have already reviewed this product")

    review = Review(
        product_id=product_id,
        user_id=user_id,
        user_name=user.get("name", ""),
        is_verified_purchase=has_purchased(user_id, product_id),
        **data,
    )
    try:
        review = create_document("review", review)
    except DuplicateKeyError:
        raise DuplicateError("You have already reviewed this product")
    logger.info("review_created", review_id=str(review["_id"]), product_id=product_id, rating=review["rating"])
    refresh_product_ratings(product["_id"])
    return review


def list_reviews(product_id: ObjectId, sort: str = "newest") -> List[Dict[str, Any]]:
    reviews = list(_reviews().find({"product_id": str(product_id), "is_approved": True}))
    if sort == "oldest":
        reviews.sort(key=lambda r: as_utc(r["created_at"]))
    elif sort == "highest":
        reviews.sort(key=lambda r: r["rating"], reverse=True)
    elif sort == "lowest":
        reviews.sort(key=lambda r: r["rating"])
    elif sort == "helpful":
        reviews.sort(key=lambda r: len(r.get("helpful", [])), reverse=True)
    else:
        reviews.sort(key=lambda r: as_utc(r["created_at"]), reverse=True)
    return reviews


def toggle_helpful(review_id: ObjectId, user_id: str) -> Tuple[bool, int]:
    """Flip the user's helpful vote: add it if absent, remove it if present."""
    added = _reviews().update_one(
        {"_id": review_id, "helpful.user_id": {"$ne": user_id}},
        {"$push": {"helpful": {"user_id": user_id, "created_at": utcnow()}}},
    ).matched_count == 1
    if not added:
        _reviews().update_one({"_id": review_id}, {"$pull": {"helpful": {"user_id": user_id}}})
    review = get_review(review_id)
    return added, len(review.get("helpful", []))


def is_helpful_by_user(review: Dict[str, Any], user_id: str) -> bool:
    return any(h["user_id"] == user_id for h in review.get("helpful", []))


def report_review(review_id: ObjectId, user_id: str, reason: str) -> Dict[str, Any]:
    res = _reviews().update_one(
        {"_id": review_id, "reported.user_id": {"$ne": user_id}},
        {"$push": {"reported": {"user_id": user_id, "reason": reason, "created_at": utcnow()}}},
    )
    if res.matched_count == 0:
        get_review(review_id)
        raise DuplicateError("You have already reported this review")
    logger.info("review_reported", review_id=str(review_id))
    return get_review(review_id)


def moderate_review(review_id: ObjectId, is_approved: bool) -> Dict[str, Any]:
    review = get_review(review_id)
    _reviews().update_one({"_id": review_id}, {"$set": {"is_approved": is_approved, "updated_at": utcnow()}})
    refresh_product_ratings(ObjectId(review["product_id"]))
    logger.info("review_moderated", review_id=str(review_id), is_approved=is_approved)
    return get_review(review_id)


def respond_to_review(review_id: ObjectId, admin_id: str, message: str) -> Dict[str, Any]:
    get_review(review_id)
    response = {"message": message, "responded_by": admin_id, "responded_at": utcnow()}
    _reviews().update_one({"_id": review_id}, {"$set": {"admin_response": response, "updated_at": utcnow()}})
    return get_review(review_id)


def delete_review(review_id: ObjectId, user: Dict[str, Any], as_admin: bool = False) -> None:
    review = get_review(review_id)
    if not as_admin and review["user_id"] != str(user["_id"]):
        raise PermissionDeniedError("You can only delete your own reviews")
    _reviews().delete_one({"_id": review_id})
    refresh_product_ratings(ObjectId(review["product_id"]))
    logger.info("review_deleted", review_id=str(review_id))


def public_review(review: Dict[str, Any], viewer_id: Optional[str] = None) -> Dict[str, Any]:
    out = serialize({k: v for k, v in review.items() if k != "reported"})
    out["helpful_count"] = len(review.get("helpful", []))
    if viewer_id:
        out["is_helpful"] = is_helpful_by_user(review, viewer_id)
    return out
