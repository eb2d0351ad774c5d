"""Admin API key model."""
from sqlalchemy import Column, String, DateTime, Uuid
import uuid

from flagkit.database import Base, utcnow


class ApiKey(Base):
    """Hashed admin API key. The plain key is never stored."""

    __tablename__ = "api_keys"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, default="admin")
    key_hash = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ApiKey {self.name}>"
