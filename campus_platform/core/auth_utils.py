from datetime import datetime, timedelta

import bcrypt
from jose import jwt, JWTError

from campus_platform import config
from campus_platform.core.errors import AuthenticationError


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def create_access_token(user_id: str, role: str = None) -> str:
    payload = {
        "sub": user_id,
        "exp": datetime.utcnow() + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or Expired Token")

    if not payload.get("sub"):
        raise AuthenticationError("Invalid token: missing user id")
    return payload


def extract_bearer_token(authorization: str) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None
