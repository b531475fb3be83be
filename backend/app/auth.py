"""
CI Compliance Engine - Authentication Utilities
Password hashing, JWT tokens, and auth dependencies
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .models.ci_report import Actor
from .models.db_models import UserDB, UserRole

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "ci-engine-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

# Bearer token security
security = HTTPBearer()


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def create_access_token(user_id: str, email: str, role: str = UserRole.BUYER.value) -> str:
    """Create a JWT access token with role claim."""
    expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": expire
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token. Expired tokens fail validation."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> UserDB:
    """
    Dependency to get the current authenticated user.
    Validates JWT token and fetches user from database.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id: str = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    # Role comes from the database, not the token, so demotions apply immediately
    user = db.query(UserDB).filter(UserDB.id == user_id).first()
    if user is None:
        raise credentials_exception

    return user


def actor_from_user(user: UserDB) -> Actor:
    """Map an account to the Actor the CI engine authorizes against."""
    try:
        role = UserRole(user.role)
    except ValueError:
        role = UserRole.BUYER
    # SYSTEM is reserved for the expiry sweep and never granted to a login
    if role == UserRole.SYSTEM:
        role = UserRole.BUYER
    supplier_id = user.supplier.id if role == UserRole.SUPPLIER and user.supplier else None
    return Actor(user_id=user.id, role=role, supplier_id=supplier_id)


async def get_current_actor(current_user: UserDB = Depends(get_current_user)) -> Actor:
    """Dependency returning the authenticated caller as a CI engine Actor."""
    return actor_from_user(current_user)
