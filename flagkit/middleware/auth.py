"""Admin API key authentication.

Keys are high-entropy random strings, so a SHA-256 hash stored in an
indexed column is enough for lookup; the plain key is never persisted.
Only admin (write and listing) routes require a key. SDK evaluation
routes are public.
"""
import hashlib
import secrets
from fastapi import HTTPException, Security, Depends
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session
from typing import Optional

from flagkit.database import get_db
from flagkit.models.api_key import ApiKey

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def hash_api_key(api_key: str) -> str:
    """SHA-256 hex digest of an API key."""
    return hashlib.sha256(api_key.encode()).hexdigest()


def generate_api_key() -> str:
    return f"fk_{secrets.token_urlsafe(32)}"


def require_api_key(
    api_key: Optional[str] = Security(api_key_header),
    db: Session = Depends(get_db)
) -> ApiKey:
    """
    Dependency that rejects requests without a known admin key.

    Usage:
        @router.post("/flags")
        def create_flag(key: ApiKey = Depends(require_api_key)):
            ...

    Raises:
        HTTPException: 401 if the key is missing or unknown
    """
    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    key = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(api_key)).first()
    if not key:
        raise HTTPException(
            status_code=401,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return key


def create_api_key(db: Session, api_key: str, name: str = "admin") -> ApiKey:
    """
    Store a hashed admin key.

    Args:
        db: Database session
        api_key: Plain text key (only its hash is stored)
        name: Label shown in listings
    """
    key = ApiKey(name=name, key_hash=hash_api_key(api_key))
    db.add(key)
    db.commit()
    db.refresh(key)
    return key
