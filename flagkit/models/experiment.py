"""Experiment version model."""
from sqlalchemy import Column, String, Text, Boolean, DateTime, Integer, Float, Index, UniqueConstraint, Uuid, text
import uuid

from flagkit.database import Base, utcnow
from flagkit.models.flag import JSONType


class ExperimentVersion(Base):
    """One version of an A/B/n experiment configuration."""

    __tablename__ = "experiments"
    __table_args__ = (
        UniqueConstraint("platform", "environment", "experiment_key", "version", name="uq_experiments_key_version"),
        Index(
            "uq_experiments_active",
            "platform", "environment", "experiment_key",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active")
        ),
        Index("ix_experiments_listing", "platform", "environment", "is_active", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    platform = Column(String(100), nullable=False)
    environment = Column(String(100), nullable=False)
    experiment_key = Column(String(100), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    revision = Column(Integer, nullable=False, default=1)  # bumped by every write, in place or not

    name = Column(String(200), nullable=False)
    description = Column(Text)
    hypothesis = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="draft")

    # Lists keep their configured order; allocation order fixes the bucket ranges
    variations = Column(JSONType, nullable=False)  # [{"key": "control", "is_control": true, ...}]
    traffic_allocation = Column(JSONType, nullable=False)  # [{"variation_key": "control", "percentage": 50}]
    targeting = Column(JSONType, nullable=False)

    primary_metric = Column(JSONType)
    secondary_metrics = Column(JSONType, nullable=False, default=list)
    confidence_level = Column(Float, nullable=False, default=0.95)

    scheduled_start_at = Column(DateTime)
    scheduled_end_at = Column(DateTime)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    winner = Column(String(100))

    created_by = Column(String(255))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ExperimentVersion {self.experiment_key} v{self.version} status={self.status}>"
