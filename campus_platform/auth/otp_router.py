from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.auth import auth_service
from campus_platform.auth.auth_schemas import OTPRequest, OTPVerifyRequest, ResetPasswordRequest
from campus_platform.auth.otp_store import OTPStore
from campus_platform.core.database import get_db
from campus_platform.core.errors import ConflictError, ForbiddenError, NotFoundError
from campus_platform.services.email_service import send_otp_email

router = APIRouter(prefix="/api/otp", tags=["OTP"])


async def _send(db: AsyncIOMotorDatabase, purpose: str, email: str) -> dict:
    code = await OTPStore(db).issue(purpose, email)
    await send_otp_email(email, code, purpose)
    return {"success": True, "message": f"OTP sent to {email}"}


async def _registered_user(db: AsyncIOMotorDatabase, email: str) -> dict:
    user = await db.users.find_one({"email": email.strip().lower()})
    if not user:
        raise NotFoundError("No account found with this email")
    return user


# ==================== SIGNUP ====================

@router.post("/send-signup-otp")
async def send_signup_otp(data: OTPRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    if await db.users.find_one({"email": data.email.lower()}):
        raise ConflictError("User with this email already exists")
    return await _send(db, "signup", data.email)


@router.post("/verify-signup-otp")
async def verify_signup_otp(data: OTPVerifyRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    await OTPStore(db).verify("signup", data.email, data.otp)
    return {"success": True, "message": "Email verified successfully"}


# ==================== LOGIN ====================

@router.post("/send-login-otp")
async def send_login_otp(data: OTPRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await _registered_user(db, data.email)
    if not user.get("is_active", True):
        raise ForbiddenError("Your account has been deactivated. Please contact the admin.")
    auth_service.ensure_approved(user)
    return await _send(db, "login", data.email)


@router.post("/verify-login-otp")
async def verify_login_otp(data: OTPVerifyRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    await OTPStore(db).verify("login", data.email, data.otp)
    user = await _registered_user(db, data.email)
    if not user.get("is_active", True):
        raise ForbiddenError("Your account has been deactivated. Please contact the admin.")
    auth_service.ensure_approved(user)
    session = await auth_service.issue_session(db, user)
    return {"success": True, "message": "Login successful", **session}


# ==================== PASSWORD RESET ====================

@router.post("/send-reset-otp")
async def send_reset_otp(data: OTPRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    await _registered_user(db, data.email)
    return await _send(db, "reset", data.email)


@router.post("/verify-reset-otp")
async def verify_reset_otp(data: OTPVerifyRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    await OTPStore(db).verify("reset", data.email, data.otp, consume=False)
    return {"success": True, "message": "OTP verified. You can now reset your password."}


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    await OTPStore(db).consume_verified("reset", data.email)
    await auth_service.reset_password(db, data.email, data.new_password)
    return {"success": True, "message": "Password reset successful"}
