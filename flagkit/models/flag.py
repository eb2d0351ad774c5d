"""Feature flag version model."""
from sqlalchemy import Column, String, Text, Boolean, DateTime, Integer, JSON, Index, UniqueConstraint, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
import uuid

from flagkit.database import Base, utcnow

JSONType = JSON().with_variant(JSONB, "postgresql")


class FlagVersion(Base):
    """One immutable version of a flag. At most one row per key is active."""

    __tablename__ = "flags"
    __table_args__ = (
        UniqueConstraint("platform", "environment", "flag_key", "version", name="uq_flags_key_version"),
        # A second active version for the same key is a constraint violation
        Index(
            "uq_flags_active",
            "platform", "environment", "flag_key",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active")
        ),
        Index("ix_flags_listing", "platform", "environment", "is_active"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    platform = Column(String(100), nullable=False)
    environment = Column(String(100), nullable=False)
    flag_key = Column(String(100), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    revision = Column(Integer, nullable=False, default=1)  # bumped by every write, in place or not

    name = Column(String(200), nullable=False)
    description = Column(Text)
    enabled = Column(Boolean, nullable=False, default=False)
    flag_type = Column(String(20), nullable=False, default="boolean")
    value_a = Column(JSONType, nullable=False)
    value_b = Column(JSONType, nullable=False)
    targeting = Column(JSONType, nullable=False)  # {"countries": [...], "force_include_users": [...], ...}

    rollout_enabled = Column(Boolean, nullable=False, default=False)
    rollout_percentage_a = Column(Integer, nullable=False, default=100)
    rollout_percentage_b = Column(Integer, nullable=False, default=0)

    created_by = Column(String(255))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<FlagVersion {self.platform}/{self.environment}/{self.flag_key} v{self.version} active={self.is_active}>"
