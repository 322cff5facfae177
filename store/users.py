"""User accounts: registration, credentials, wallet ledger and addresses."""
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import settings
from database import as_utc, compare_and_swap, create_document, get_collection, paginate, parse_object_id, serialize, utcnow
from errors import (
    AuthenticationError,
    DuplicateError,
    InsufficientFundsError,
    NotFoundError,
    ValidationFailed,
)
from pricing import to_money
from schemas import Address, User, Wallet
from security import get_password_hash, verify_password

logger = structlog.get_logger(__name__)

PRIVATE_FIELDS = (
    "password_hash",
    "email_verification_token",
    "password_reset_token",
    "password_reset_expires",
    "version",
)
DEBIT_POLICIES = ("clamp", "reject")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return serialize({k: v for k, v in user.items() if k not in PRIVATE_FIELDS})


def _users():
    return get_collection("user")


def get_user(user_id: Any) -> Dict[str, Any]:
    oid = parse_object_id(user_id)
    user = _users().find_one({"_id": oid}) if oid else None
    if not user:
        raise NotFoundError("User")
    return user


# ---------------------- Accounts ----------------------

def register(name: str, email: str, password: str, phone: Optional[str] = None) -> Dict[str, Any]:
    email = email.strip().lower()
    if _users().find_one({"email": email}):
        raise DuplicateError("User already exists with this email")

    wallet = {"balance": 0.0, "transactions": []}
    if settings.WELCOME_BONUS > 0:
        wallet = apply_transaction(wallet, "credit", settings.WELCOME_BONUS, "Welcome bonus")

    user = User(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        phone=phone.strip() if phone else None,
        role="admin" if email in settings.ADMIN_EMAILS else "user",
        wallet=Wallet(**wallet),
        email_verification_token=secrets.token_urlsafe(32),
    )
    try:
        doc = create_document("user", {**user.model_dump(), "version": 0})
    except DuplicateKeyError:
        raise DuplicateError("User already exists with this email")
    logger.info("user_registered", user_id=str(doc["_id"]), role=doc["role"])
    return doc


def authenticate(email: str, password: str) -> Dict[str, Any]:
    user = _users().find_one({"email": email.strip().lower()})
    if not user or not user.get("is_active", True):
        raise AuthenticationError("Invalid credentials")
    if not verify_password(password, user.get("password_hash", "")):
        logger.info("login_failed", user_id=str(user["_id"]))
        raise AuthenticationError("Invalid credentials")
    now = utcnow()
    _users().update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return user


def update_profile(user_id: ObjectId, name: Optional[str] = None, phone: Optional[str] = None, avatar: Optional[str] = None) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if name:
        changes["name"] = name.strip()
    if phone:
        changes["phone"] = phone.strip()
    if avatar is not None:
        changes["avatar"] = avatar
    if changes:
        changes["updated_at"] = utcnow()
        _users().update_one({"_id": user_id}, {"$set": changes})
    return get_user(user_id)


def change_password(user_id: ObjectId, current_password: str, new_password: str) -> None:
    user = get_user(user_id)
    if not verify_password(current_password, user.get("password_hash", "")):
        raise ValidationFailed("Current password is incorrect")
    _users().update_one(
        {"_id": user_id},
        {"$set": {"password_hash": get_password_hash(new_password), "updated_at": utcnow()}},
    )
    logger.info("password_changed", user_id=str(user_id))


def verify_email(token: str) -> Dict[str, Any]:
    user = _users().find_one_and_update(
        {"email_verification_token": token},
        {"$set": {"is_email_verified": True, "email_verification_token": None, "updated_at": utcnow()}},
    )
    if not user:
        raise ValidationFailed("Invalid or expired verification token")
    logger.info("email_verified", user_id=str(user["_id"]))
    return user


def request_password_reset(email: str) -> Optional[str]:
    """Issue a reset token for the account, if there is one.

    Delivery of the token is outside this service; callers answer the same
    way whether or not the account exists.
    """
    token = secrets.token_urlsafe(32)
    expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES)
    res = _users().update_one(
        {"email": email.strip().lower(), "is_active": True},
        {"$set": {"password_reset_token": token, "password_reset_expires": expires}},
    )
    if res.matched_count == 0:
        return None
    logger.info("password_reset_requested")
    return token


def reset_password(token: str, new_password: str) -> None:
    user = _users().find_one({"password_reset_token": token})
    expires = user.get("password_reset_expires") if user else None
    if not user or expires is None or as_utc(expires) < utcnow():
        raise ValidationFailed("Invalid or expired reset token")
    _users().update_one(
        {"_id": user["_id"]},
        {
            "$set": {
                "password_hash": get_password_hash(new_password),
                "password_reset_token": None,
                "password_reset_expires": None,
                "updated_at": utcnow(),
            }
        },
    )
    logger.info("password_reset", user_id=str(user["_id"]))


# ---------------------- Wallet ----------------------

def apply_transaction(
    wallet: Dict[str, Any],
    type: str,
    amount: float,
    description: str,
    order_id: Optional[str] = None,
    policy: Optional[str] = None,
    at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return a new wallet with the transaction recorded, newest first.

    Debits follow `policy`: "clamp" floors the balance at zero and still
    records the requested amount, "reject" raises InsufficientFundsError
    when the balance does not cover the debit.
    """
    policy = policy or settings.WALLET_DEBIT_POLICY
    if policy not in DEBIT_POLICIES:
        raise ValueError(f"Unknown wallet debit policy: {policy}")
    if type not in ("credit", "debit"):
        raise ValidationFailed(f"Unknown transaction type: {type}")
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationFailed("Invalid amount")

    balance = float(wallet.get("balance", 0.0))
    if type == "credit":
        new_balance = to_money(balance + amount)
    elif amount > balance and policy == "reject":
        raise InsufficientFundsError(balance, amount)
    else:
        new_balance = max(0.0, to_money(balance - amount))

    entry = {
        "id": str(ObjectId()),
        "type": type,
        "amount": amount,
        "description": description,
        "order_id": order_id,
        "created_at": at or utcnow(),
    }
    return {"balance": new_balance, "transactions": [entry] + list(wallet.get("transactions", []))}


def add_transaction(
    user_id: ObjectId,
    type: str,
    amount: float,
    description: str,
    order_id: Optional[str] = None,
    policy: Optional[str] = None,
) -> Dict[str, Any]:
    def mutate(user):
        return {"wallet": apply_transaction(user.get("wallet") or {}, type, amount, description, order_id, policy)}

    user = compare_and_swap("user", user_id, mutate)
    if user is None:
        raise NotFoundError("User")
    logger.info(
        "wallet_credited" if type == "credit" else "wallet_debited",
        user_id=str(user_id),
        amount=to_money(amount),
        balance=user["wallet"]["balance"],
        order_id=order_id,
    )
    return user["wallet"]


def wallet_transactions(user_id: ObjectId, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    wallet = get_user(user_id).get("wallet") or {}
    transactions = sorted(
        wallet.get("transactions", []),
        key=lambda t: as_utc(t["created_at"]),
        reverse=True,
    )
    skip = (page - 1) * limit
    return {
        "transactions": serialize(transactions[skip:skip + limit]),
        "balance": wallet.get("balance", 0.0),
        "pagination": paginate(page, limit, len(transactions)),
    }


# ---------------------- Addresses ----------------------

def _with_default(addresses: List[Dict[str, Any]], default_id: Optional[str]) -> List[Dict[str, Any]]:
    return [{**a, "is_default": a["id"] == default_id} for a in addresses]


def add_address(user_id: ObjectId, data: Dict[str, Any]) -> List[Dict[str, Any]]:
    address = Address(id=str(ObjectId()), **data).model_dump()

    def mutate(user):
        addresses = list(user.get("addresses", []))
        if address["is_default"] or not addresses:
            addresses = _with_default(addresses, None)
            address["is_default"] = True
        return {"addresses": addresses + [address]}

    user = compare_and_swap("user", user_id, mutate)
    if user is None:
        raise NotFoundError("User")
    return user["addresses"]


def update_address(user_id: ObjectId, address_id: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
    def mutate(user):
        addresses = list(user.get("addresses", []))
        index = next((i for i, a in enumerate(addresses) if a["id"] == address_id), None)
        if index is None:
            raise NotFoundError("Address")
        updated = Address(**{**addresses[index], **data, "id": address_id}).model_dump()
        if updated["is_default"]:
            addresses = _with_default(addresses, None)
        addresses[index] = updated
        return {"addresses": addresses}

    user = compare_and_swap("user", user_id, mutate)
    if user is None:
        raise NotFoundError("User")
    return user["addresses"]


def delete_address(user_id: ObjectId, address_id: str) -> List[Dict[str, Any]]:
    def mutate(user):
        addresses = list(user.get("addresses", []))
        removed = next((a for a in addresses if a["id"] == address_id), None)
        if removed is None:
            raise NotFoundError("Address")
        remaining = [a for a in addresses if a["id"] != address_id]
        if removed.get("is_default") and remaining:
            remaining = _with_default(remaining, remaining[0]["id"])
        return {"addresses": remaining}

    user = compare_and_swap("user", user_id, mutate)
    if user is None:
        raise NotFoundError("User")
    return user["addresses"]
