"""Tests for API key authentication."""
import hashlib

import pytest
from sqlalchemy.orm import Session

from flagkit.models.api_key import ApiKey
from flagkit.middleware.auth import create_api_key, generate_api_key, hash_api_key


def test_hash_api_key_is_deterministic():
    """Test that hash_api_key produces consistent results."""
    api_key = "test-key-12345"

    hash1 = hash_api_key(api_key)
    hash2 = hash_api_key(api_key)
    hash3 = hash_api_key(api_key)

    assert hash1 == hash2 == hash3, "Hash should be deterministic"


def test_hash_api_key_is_sha256():
    """Test that hash_api_key uses SHA256."""
    api_key = "test-key-12345"
    expected = hashlib.sha256(api_key.encode()).hexdigest()
    actual = hash_api_key(api_key)

    assert actual == expected, "Should use SHA256 hashing"
    assert len(actual) == 64, "SHA256 hex digest should be 64 characters"


def test_generated_keys_are_unique():
    """Test that generated keys are prefixed and never repeat."""
    keys = {generate_api_key() for _ in range(50)}

    assert len(keys) == 50
    assert all(key.startswith("fk_") for key in keys)


def test_create_api_key_stores_only_hash(db: Session):
    """Test creating an admin key."""
    api_key = "new-test-key-abc123"

    key = create_api_key(db, api_key, name="ci")

    assert key.id is not None
    assert key.name == "ci"
    assert key.key_hash == hash_api_key(api_key)
    assert key.key_hash != api_key


def test_key_lookup_by_hash(db: Session):
    """Test that keys can be looked up directly by hash."""
    create_api_key(db, "lookup-test-key")

    found = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key("lookup-test-key")).first()
    missing = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key("wrong-key")).first()

    assert found is not None
    assert missing is None


@pytest.fixture
def db():
    """Create test database session."""
    from flagkit.database import SessionLocal, engine, Base
    import flagkit.models  # noqa: F401

    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    session = SessionLocal()

    yield session

    # Cleanup
    session.close()
    Base.metadata.drop_all(bind=engine)
