from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from database import serialize
from schemas import OrderIn, OrderStatus, StatusUpdate
from security import get_current_user, is_admin, require_admin
from store import orders as order_store

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=201)
def create_order(payload: OrderIn, current: Dict[str, Any] = Depends(get_current_user)):
    order = order_store.place_order(current, payload.model_dump())
    return {"message": "Order placed successfully", "order": serialize(order)}


@router.get("")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    current: Dict[str, Any] = Depends(get_current_user),
):
    return order_store.list_orders(current, as_admin=is_admin(current), status=status, page=page, limit=limit)


@router.get("/{order_id}")
def get_order(order_id: str, current: Dict[str, Any] = Depends(get_current_user)):
    order = order_store.get_order(order_id, current, as_admin=is_admin(current))
    return {"order": serialize(order)}


@router.put("/{order_id}/status")
def update_status(order_id: str, payload: StatusUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    order = order_store.update_status(
        order_id,
        payload.status,
        note=payload.note,
        tracking_number=payload.tracking_number,
        payment_status=payload.payment_status,
        estimated_delivery=payload.estimated_delivery,
    )
    return {"message": "Order status updated", "order": serialize(order)}


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, current: Dict[str, Any] = Depends(get_current_user)):
    order = order_store.cancel_order(order_id, current, as_admin=is_admin(current))
    return {"message": "Order cancelled successfully", "order": serialize(order)}


@router.post("/{order_id}/refund")
def refund_order(order_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    order = order_store.refund_order(order_id)
    return {"message": "Order refunded successfully", "order": serialize(order)}
