"""Order placement and the order status lifecycle.

Placing an order reserves stock line by line, charges the wallet when the
order is paid from it, and stores an immutable snapshot of the purchased
items. Every status write goes through `append_status` so the history log
grows by exactly one entry per change.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId

from database import (
    as_utc,
    compare_and_swap,
    create_document,
    get_collection,
    next_sequence,
    paginate,
    parse_object_id,
    serialize,
    utcnow,
)
from errors import InvalidStateError, NotFoundError, PermissionDeniedError
from pricing import calculate_totals, format_order_number, shipping_cost
from schemas import Order
from store import products as product_store
from store import users as user_store

logger = structlog.get_logger(__name__)

CANCELLABLE = ("pending", "confirmed")


def _orders():
    return get_collection("order")


def can_be_cancelled(order: Dict[str, Any]) -> bool:
    return order.get("status") in CANCELLABLE


def can_be_refunded(order: Dict[str, Any]) -> bool:
    return order.get("status") == "delivered" and order.get("payment_status") == "paid"


def order_summary(order: Dict[str, Any]) -> Dict[str, Any]:
    return serialize({
        "id": order["_id"],
        "order_number": order["order_number"],
        "total": order["total"],
        "status": order["status"],
        "payment_status": order.get("payment_status"),
        "item_count": len(order.get("items", [])),
        "created_at": order.get("created_at"),
    })


def append_status(order: Dict[str, Any], status: str, note: Optional[str] = None, at: Optional[datetime] = None) -> Dict[str, Any]:
    """Return the fields that record a status change on `order`.

    Any status may follow any other. The new history entry is stamped no
    earlier than the last one so the log stays ordered even if clocks step back.
    """
    history = list(order.get("status_history", []))
    timestamp = as_utc(at or utcnow())
    if history:
        timestamp = max(timestamp, as_utc(history[-1]["timestamp"]))
    history.append({
        "status": status,
        "timestamp": timestamp,
        "note": note or f"Order status changed to {status}",
    })
    return {"status": status, "status_history": history}


# ---------------------- Placement ----------------------

def _release(lines: List[Dict[str, Any]]) -> None:
    for line in lines:
        product_store.restock(ObjectId(line["product_id"]), line["quantity"])


def _snapshot_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    lines = []
    for item in items:
        product = product_store.get_product(item["product"])
        lines.append({
            "product_id": str(product["_id"]),
            "title": product["title"],
            "price": product["price"],
            "quantity": item["quantity"],
            "image": product_store.primary_image(product),
        })
    return lines


def place_order(user: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """Reserve stock, charge the wallet when it pays, and store the order.

    If anything fails once stock has been taken, the reserved units are put
    back and a wallet charge that already landed is credited back before the
    error propagates.
    """
    lines = _snapshot_items(payload["items"])
    method = payload.get("shipping_method", "standard")
    payment_method = payload.get("payment_method", "wallet")
    order_id = ObjectId()

    reserved: List[Dict[str, Any]] = []
    charged: Optional[float] = None
    try:
        for line in lines:
            product_store.reduce_stock(ObjectId(line["product_id"]), line["quantity"])
            reserved.append(line)

        totals = calculate_totals(lines, shipping=shipping_cost(method))
        order_number = format_order_number(next_sequence("order_number"))

        payment_status = "pending"
        payment_details: Dict[str, Any] = {}
        if payment_method == "wallet":
            user_store.add_transaction(
                user["_id"], "debit", totals["total"], f"Payment for order {order_number}",
                order_id=str(order_id), policy="reject",
            )
            charged = totals["total"]
            payment_status = "paid"
            payment_details = {
                "transaction_id": uuid.uuid4().hex,
                "payment_date": utcnow(),
                "payment_gateway": "wallet",
            }

        order = Order(
            order_number=order_number,
            user_id=str(user["_id"]),
            items=lines,
            payment_status=payment_status,
            payment_method=payment_method,
            payment_details=payment_details,
            shipping_address=payload["shipping_address"],
            shipping_method=method,
            notes=payload.get("notes"),
            **totals,
        ).model_dump()
        order.update(append_status(order, "pending", "Order placed"))
        order = create_document("order", {**order, "_id": order_id, "version": 0})
    except Exception:
        _release(reserved)
        if charged is not None:
            user_store.add_transaction(
                user["_id"], "credit", charged, f"Refund for failed order {order_number}", order_id=str(order_id),
            )
        if reserved:
            logger.warning("order_rolled_back", order_id=str(order_id), lines=len(reserved), refunded=charged)
        raise

    logger.info(
        "order_created",
        order_id=str(order_id),
        order_number=order_number,
        user_id=str(user["_id"]),
        total=order["total"],
        payment_status=payment_status,
    )
    return order


# ---------------------- Queries ----------------------

def get_order(order_id: Any, user: Dict[str, Any], as_admin: bool = False) -> Dict[str, Any]:
    oid = parse_object_id(order_id)
    order = _orders().find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order")
    if not as_admin and order["user_id"] != str(user["_id"]):
        raise PermissionDeniedError("You can only access your own orders")
    return order


def list_orders(user: Dict[str, Any], as_admin: bool = False, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    filter_q: Dict[str, Any] = {}
    if not as_admin:
        filter_q["user_id"] = str(user["_id"])
    if status:
        filter_q["status"] = status
    total = _orders().count_documents(filter_q)
    cursor = _orders().find(filter_q).sort([("created_at", -1)]).skip((page - 1) * limit).limit(limit)
    return {
        "orders": [order_summary(o) for o in cursor],
        "pagination": paginate(page, limit, total),
    }


# ---------------------- Lifecycle ----------------------

def update_status(
    order_id: Any,
    status: str,
    note: Optional[str] = None,
    tracking_number: Optional[str] = None,
    payment_status: Optional[str] = None,
    estimated_delivery: Optional[datetime] = None,
) -> Dict[str, Any]:
    oid = parse_object_id(order_id)

    def mutate(order):
        changes = append_status(order, status, note)
        if tracking_number:
            changes["tracking_number"] = tracking_number
        if payment_status:
            changes["payment_status"] = payment_status
        if estimated_delivery:
            changes["estimated_delivery"] = estimated_delivery
        if status == "delivered":
            changes["actual_delivery"] = utcnow()
        return changes

    order = compare_and_swap("order", oid, mutate) if oid else None
    if order is None:
        raise NotFoundError("Order")
    logger.info("order_status_changed", order_id=str(oid), status=status)
    return order


def cancel_order(order_id: Any, user: Dict[str, Any], as_admin: bool = False) -> Dict[str, Any]:
    current = get_order(order_id, user, as_admin)

    before_paid = False

    def mutate(order):
        nonlocal before_paid
        if not can_be_cancelled(order):
            raise InvalidStateError(f"Order cannot be cancelled while {order['status']}")
        changes = append_status(order, "cancelled", "Order cancelled")
        if order.get("payment_status") == "paid":
            changes["payment_status"] = "refunded"
        before_paid = order.get("payment_status") == "paid"
        return changes

    order = compare_and_swap("order", current["_id"], mutate)
    _release(order["items"])
    if before_paid and order.get("payment_method") == "wallet":
        user_store.add_transaction(
            ObjectId(order["user_id"]), "credit", order["total"],
            f"Refund for cancelled order {order['order_number']}", order_id=str(order["_id"]),
        )
    logger.info("order_cancelled", order_id=str(order["_id"]), refunded=bool(before_paid))
    return order


def refund_order(order_id: Any) -> Dict[str, Any]:
    oid = parse_object_id(order_id)

    def mutate(order):
        if not can_be_refunded(order):
            raise InvalidStateError("Only delivered, paid orders can be refunded")
        changes = append_status(order, "refunded", "Order refunded")
        changes["payment_status"] = "refunded"
        return changes

    order = compare_and_swap("order", oid, mutate) if oid else None
    if order is None:
        raise NotFoundError("Order")
    if order.get("payment_method") == "wallet":
        user_store.add_transaction(
            ObjectId(order["user_id"]), "credit", order["total"],
            f"Refund for order {order['order_number']}", order_id=str(order["_id"]),
        )
    logger.info("order_refunded", order_id=str(order["_id"]), total=order["total"])
    return order
