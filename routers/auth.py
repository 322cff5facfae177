from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from schemas import (
    AddFundsRequest,
    AddressIn,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)
from security import create_access_token, get_current_user
from store import users as user_store
from store.users import public_user

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session(user: Dict[str, Any]) -> Dict[str, Any]:
    view = public_user(user)
    return {
        "id": view["id"],
        "name": view["name"],
        "email": view["email"],
        "role": view["role"],
        "wallet": view["wallet"],
        "addresses": view.get("addresses", []),
    }


@router.post("/register", status_code=201)
def register(payload: RegisterRequest):
    user = user_store.register(payload.name, payload.email, payload.password, payload.phone)
    token = create_access_token({"sub": str(user["_id"])})
    return {"message": "User registered successfully", "token": token, "user": _session(user)}


@router.post("/login")
def login(payload: LoginRequest):
    user = user_store.authenticate(payload.email, payload.password)
    token = create_access_token({"sub": str(user["_id"])})
    return {"message": "Login successful", "token": token, "user": _session(user)}


@router.get("/me")
def me(current: Dict[str, Any] = Depends(get_current_user)):
    return {"user": public_user(current)}


@router.put("/profile")
def update_profile(payload: ProfileUpdate, current: Dict[str, Any] = Depends(get_current_user)):
    user = user_store.update_profile(current["_id"], payload.name, payload.phone, payload.avatar)
    view = public_user(user)
    return {
        "message": "Profile updated successfully",
        "user": {k: view.get(k) for k in ("id", "name", "email", "phone", "avatar", "role")},
    }


@router.put("/change-password")
def change_password(payload: ChangePasswordRequest, current: Dict[str, Any] = Depends(get_current_user)):
    user_store.change_password(current["_id"], payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@router.post("/verify-email")
def verify_email(payload: VerifyEmailRequest):
    user_store.verify_email(payload.token)
    return {"message": "Email verified successfully"}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest):
    user_store.request_password_reset(payload.email)
    return {"message": "If an account exists for this email, a reset link has been sent"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest):
    user_store.reset_password(payload.token, payload.new_password)
    return {"message": "Password has been reset"}


# Wallet

@router.post("/wallet/add-funds")
def add_funds(payload: AddFundsRequest, current: Dict[str, Any] = Depends(get_current_user)):
    wallet = user_store.add_transaction(current["_id"], "credit", payload.amount, payload.description)
    return {"message": "Funds added successfully", "wallet": public_user({"wallet": wallet})["wallet"]}


@router.get("/wallet/transactions")
def wallet_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current: Dict[str, Any] = Depends(get_current_user),
):
    return user_store.wallet_transactions(current["_id"], page, limit)


# Addresses

@router.post("/addresses", status_code=201)
def add_address(payload: AddressIn, current: Dict[str, Any] = Depends(get_current_user)):
    addresses = user_store.add_address(current["_id"], payload.model_dump())
    return {"message": "Address added successfully", "addresses": addresses}


@router.put("/addresses/{address_id}")
def update_address(address_id: str, payload: AddressIn, current: Dict[str, Any] = Depends(get_current_user)):
    addresses = user_store.update_address(current["_id"], address_id, payload.model_dump())
    return {"message": "Address updated successfully", "addresses": addresses}


@router.delete("/addresses/{address_id}")
def delete_address(address_id: str, current: Dict[str, Any] = Depends(get_current_user)):
    addresses = user_store.delete_address(current["_id"], address_id)
    return {"message": "Address deleted successfully", "addresses": addresses}
