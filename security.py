from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import settings
from errors import Forbidden, InvalidCredentials, Unauthorized, UserExists
from schemas import User
from storage import Storage, get_storage

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None):
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user["id"], "email": user["email"], "role": user["role"], "exp": expire}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    if not payload.get("sub"):
        raise Unauthorized("Invalid token")
    return payload


def public_user(user: dict) -> dict:
    """Strip the password hash before a user leaves the API."""
    return {k: v for k, v in user.items() if k != "password_hash"}


def signup(storage: Storage, email: str, password: str, name: str, role: str = "user"):
    if storage.get_user_by_email(email):
        raise UserExists()
    user = storage.create_user(User(email=email.lower(), password_hash=get_password_hash(password), name=name, role=role))
    return public_user(user), create_access_token(user)


def login(storage: Storage, email: str, password: str):
    user = storage.get_user_by_email(email)
    if not user:
        # Same work and same message whether or not the email exists
        pwd_context.dummy_verify()
        raise InvalidCredentials()
    if not verify_password(password, user.get("password_hash", "")):
        raise InvalidCredentials()
    return public_user(user), create_access_token(user)


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), storage: Storage = Depends(get_storage)) -> dict:
    if not token:
        raise Unauthorized("Access token required")
    payload = decode_access_token(token)
    user = storage.get_user(payload["sub"])
    if not user:
        raise Unauthorized()
    return public_user(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise Forbidden("Admin access required")
    return user
