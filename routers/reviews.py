from typing import Any, Dict

from fastapi import APIRouter, Depends

from database import parse_object_id
from errors import NotFoundError
from schemas import AdminResponseRequest, ModerationRequest, ReportRequest
from security import get_current_user, is_admin, require_admin
from store import reviews as review_store

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


def _review_id(review_id: str):
    oid = parse_object_id(review_id)
    if oid is None:
        raise NotFoundError("Review")
    return oid


@router.post("/{review_id}/report")
def report_review(review_id: str, payload: ReportRequest, current: Dict[str, Any] = Depends(get_current_user)):
    review_store.report_review(_review_id(review_id), str(current["_id"]), payload.reason)
    return {"message": "Review reported successfully"}


@router.put("/{review_id}/moderation")
def moderate_review(review_id: str, payload: ModerationRequest, admin: Dict[str, Any] = Depends(require_admin)):
    review = review_store.moderate_review(_review_id(review_id), payload.is_approved)
    return {"message": "Review moderation updated", "review": review_store.public_review(review)}


@router.post("/{review_id}/response")
def respond_to_review(review_id: str, payload: AdminResponseRequest, admin: Dict[str, Any] = Depends(require_admin)):
    review = review_store.respond_to_review(_review_id(review_id), str(admin["_id"]), payload.message)
    return {"message": "Response added successfully", "review": review_store.public_review(review)}


@router.delete("/{review_id}")
def delete_review(review_id: str, current: Dict[str, Any] = Depends(get_current_user)):
    review_store.delete_review(_review_id(review_id), current, as_admin=is_admin(current))
    return {"message": "Review deleted successfully"}
