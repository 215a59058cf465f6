from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.auth import auth_service as service
from campus_platform.auth.auth_schemas import SignupRequest, LoginRequest
from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/signup", status_code=201)
async def signup(data: SignupRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Register a student or mentor. The account stays pending until an admin approves it.
    """
    user = await service.signup(db, data.model_dump())
    return {
        "success": True,
        "message": "Registration successful. Please wait for admin approval.",
        "user": user,
    }


@router.post("/login")
async def login(data: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    session = await service.login(db, data.email_or_phone, data.password)
    return {"success": True, "message": "Login successful", **session}


@router.get("/me")
async def get_me(user: UserContext = Depends(get_current_user)):
    return {"success": True, "user": service.public_user(user.profile)}


@router.post("/logout")
async def logout(user: UserContext = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    return {"success": True, "message": "Logged out successfully"}
