"""
Token issuance and verification.

A credential is an HS256 JWT whose ``sub`` claim is the user id. Requests may
send it as ``authorization: Bearer <token>`` or as a raw ``token`` header.
"""
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database

from database import as_object_id, get_db
from errors import AuthenticationError

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "10080"))

password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return password_ctx.verify(password, hashed)


def create_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "exp": now + timedelta(minutes=JWT_EXPIRES_MIN),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Session expired. Please login again")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token. Please login again")


bearer_scheme = HTTPBearer(auto_error=False)
token_header = APIKeyHeader(name="token", auto_error=False)


def extract_token(bearer: Optional[HTTPAuthorizationCredentials], token: Optional[str]) -> str:
    """Pick the credential out of the two accepted headers; Bearer wins."""
    if bearer is not None and bearer.credentials:
        return bearer.credentials
    if token:
        return token
    raise AuthenticationError()


def verify_credential(credential: str, database: Database) -> str:
    payload = decode_token(credential)
    user_id = as_object_id(payload.get("sub"))
    if user_id is None or database["user"].find_one({"_id": user_id}, {"_id": 1}) is None:
        logger.info("Rejected token for unknown user %s", payload.get("sub"))
        raise AuthenticationError("User not found. Please login again")
    return str(user_id)


def get_current_user_id(bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
                        token: Optional[str] = Depends(token_header),
                        database: Database = Depends(get_db)) -> str:
    return verify_credential(extract_token(bearer, token), database)
