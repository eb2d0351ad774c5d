"""Versioned store and lifecycle for A/B/n experiments."""
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flagkit.core.experiments import ALLOCATION_EDITABLE, next_status
from flagkit.core.validation import (
    validate_experiment_definition,
    validate_traffic_allocation,
    validate_winner,
)
from flagkit.database import utcnow
from flagkit.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from flagkit.models.experiment import ExperimentVersion
from flagkit.schemas.evaluation import Page
from flagkit.schemas.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentStatus,
    ExperimentUpdate,
    TrafficSplit,
    Variation,
)
from flagkit.services.pagination import decode_cursor, encode_cursor


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _dump(items) -> list:
    return [item.model_dump() for item in items]


class ExperimentService:
    """
    Store for experiments.

    Experiments are created in draft. Full edits are only allowed in draft
    and create a new version; status changes and traffic allocation
    changes update the active version in place.
    """

    def __init__(self, db: Session):
        self.db = db

    # -- reads -------------------------------------------------------------

    def _active_query(self, platform: str, environment: str, experiment_key: str):
        return self.db.query(ExperimentVersion).filter(
            ExperimentVersion.platform == platform,
            ExperimentVersion.environment == environment,
            ExperimentVersion.experiment_key == experiment_key,
            ExperimentVersion.is_active == True
        )

    def _active_record(self, platform: str, environment: str, experiment_key: str) -> ExperimentVersion:
        record = self._active_query(platform, environment, experiment_key).first()
        if not record:
            raise NotFoundError(f"Experiment not found: {experiment_key}")
        return record

    def find_active(self, platform: str, environment: str, experiment_key: str) -> Optional[Experiment]:
        record = self._active_query(platform, environment, experiment_key).first()
        return Experiment.model_validate(record) if record else None

    def get_active(self, platform: str, environment: str, experiment_key: str) -> Experiment:
        """
        Get the active version of an experiment.

        Raises:
            NotFoundError: If the key has no active version
        """
        return Experiment.model_validate(self._active_record(platform, environment, experiment_key))

    def get_version(self, platform: str, environment: str, experiment_key: str, version: int) -> Experiment:
        record = self.db.query(ExperimentVersion).filter(
            ExperimentVersion.platform == platform,
            ExperimentVersion.environment == environment,
            ExperimentVersion.experiment_key == experiment_key,
            ExperimentVersion.version == version
        ).first()
        if not record:
            raise NotFoundError(f"Experiment version not found: {experiment_key} v{version}")
        return Experiment.model_validate(record)

    def exists(self, platform: str, environment: str, experiment_key: str) -> bool:
        return self._active_query(platform, environment, experiment_key).first() is not None

    def list(
        self,
        platform: str,
        environment: str,
        status: Optional[ExperimentStatus] = None,
        limit: int = 100,
        cursor: Optional[str] = None
    ) -> Page[Experiment]:
        """List active experiments ordered by key, optionally by status."""
        offset = decode_cursor(cursor)
        query = self.db.query(ExperimentVersion).filter(
            ExperimentVersion.platform == platform,
            ExperimentVersion.environment == environment,
            ExperimentVersion.is_active == True
        )
        if status is not None:
            query = query.filter(ExperimentVersion.status == ExperimentStatus(status).value)

        # Key order is stable across edits, so pages never skip or repeat
        records = query.order_by(ExperimentVersion.experiment_key.asc()).offset(offset).limit(limit + 1).all()

        has_more = len(records) > limit
        return Page[Experiment](
            items=[Experiment.model_validate(r) for r in records[:limit]],
            next_cursor=encode_cursor(offset + limit) if has_more else None,
            has_more=has_more
        )

    def list_running(self, platform: str, environment: str) -> List[Experiment]:
        """Every running experiment for a platform/environment (batch evaluation)."""
        records = self.db.query(ExperimentVersion).filter(
            ExperimentVersion.platform == platform,
            ExperimentVersion.environment == environment,
            ExperimentVersion.is_active == True,
            ExperimentVersion.status == ExperimentStatus.RUNNING.value
        ).order_by(ExperimentVersion.experiment_key.asc()).all()
        return [Experiment.model_validate(r) for r in records]

    def list_versions(self, platform: str, environment: str, experiment_key: str) -> List[Experiment]:
        records = self.db.query(ExperimentVersion).filter(
            ExperimentVersion.platform == platform,
            ExperimentVersion.environment == environment,
            ExperimentVersion.experiment_key == experiment_key
        ).order_by(ExperimentVersion.version.desc()).all()
        if not records:
            raise NotFoundError(f"Experiment not found: {experiment_key}")
        return [Experiment.model_validate(r) for r in records]

    # -- writes ------------------------------------------------------------

    def _commit(self, conflict_message: str) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(conflict_message)

    @staticmethod
    def _check_expected(
        record: ExperimentVersion,
        expected_version: Optional[int] = None,
        expected_revision: Optional[int] = None
    ) -> None:
        if expected_version is not None and record.version != expected_version:
            raise ConflictError(
                f"Experiment {record.experiment_key} is at version {record.version}, "
                f"expected {expected_version}"
            )
        if expected_revision is not None and record.revision != expected_revision:
            raise ConflictError(
                f"Experiment {record.experiment_key} is at revision {record.revision}, "
                f"expected {expected_revision}"
            )

    def _update_active_in_place(self, record: ExperimentVersion, values: dict) -> None:
        # Conditional on the revision and status we read so racing writers are
        # caught; every write bumps the revision
        updated = self._active_query(record.platform, record.environment, record.experiment_key).filter(
            ExperimentVersion.version == record.version,
            ExperimentVersion.revision == record.revision,
            ExperimentVersion.status == record.status
        ).update(dict(values, revision=record.revision + 1), synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            raise ConflictError(f"Experiment {record.experiment_key} was modified concurrently")

    def create(self, platform: str, environment: str, data: ExperimentCreate) -> Experiment:
        """
        Create version 1 of an experiment in draft status.

        Raises:
            ConflictError: If the key already exists
            ValidationError: If variations, allocation or targeting break an invariant
        """
        if self.exists(platform, environment, data.experiment_key):
            raise ConflictError(f"Experiment already exists: {data.experiment_key}")

        start, end = _naive_utc(data.scheduled_start_at), _naive_utc(data.scheduled_end_at)
        validate_experiment_definition(data.variations, data.traffic_allocation, data.targeting, start, end)

        now = utcnow()
        record = ExperimentVersion(
            platform=platform,
            environment=environment,
            experiment_key=data.experiment_key,
            version=1,
            revision=1,
            is_active=True,
            name=data.name,
            description=data.description,
            hypothesis=data.hypothesis,
            status=ExperimentStatus.DRAFT.value,
            variations=_dump(data.variations),
            traffic_allocation=_dump(data.traffic_allocation),
            targeting=data.targeting.model_dump(),
            primary_metric=data.primary_metric.model_dump() if data.primary_metric else None,
            secondary_metrics=_dump(data.secondary_metrics),
            confidence_level=data.confidence_level,
            scheduled_start_at=start,
            scheduled_end_at=end,
            created_by=data.created_by,
            created_at=now,
            updated_at=now
        )
        self.db.add(record)
        self._commit(f"Experiment already exists: {data.experiment_key}")
        self.db.refresh(record)
        return Experiment.model_validate(record)

    def update(self, platform: str, environment: str, experiment_key: str, data: ExperimentUpdate) -> Experiment:
        """
        Edit a draft experiment by creating a new version.

        Raises:
            InvalidTransitionError: If the experiment has left draft
            ValidationError: If the merged definition breaks an invariant
        """
        current = self._active_record(platform, environment, experiment_key)
        self._check_expected(current, data.expected_version, data.expected_revision)

        if current.status != ExperimentStatus.DRAFT.value:
            raise InvalidTransitionError(f"Cannot edit experiment in {current.status} status")

        existing = Experiment.model_validate(current)
        variations = data.variations if data.variations is not None else existing.variations
        allocation = data.traffic_allocation if data.traffic_allocation is not None else existing.traffic_allocation
        targeting = data.targeting if data.targeting is not None else existing.targeting
        start = _naive_utc(data.scheduled_start_at) if data.scheduled_start_at is not None else existing.scheduled_start_at
        end = _naive_utc(data.scheduled_end_at) if data.scheduled_end_at is not None else existing.scheduled_end_at
        validate_experiment_definition(variations, allocation, targeting, start, end)

        primary_metric = data.primary_metric if data.primary_metric is not None else existing.primary_metric
        secondary_metrics = data.secondary_metrics if data.secondary_metrics is not None else existing.secondary_metrics

        now = utcnow()
        new_record = ExperimentVersion(
            platform=platform,
            environment=environment,
            experiment_key=experiment_key,
            version=current.version + 1,
            revision=current.revision + 1,
            is_active=True,
            name=data.name if data.name is not None else existing.name,
            description=data.description if data.description is not None else existing.description,
            hypothesis=data.hypothesis if data.hypothesis is not None else existing.hypothesis,
            status=ExperimentStatus.DRAFT.value,
            variations=_dump(variations),
            traffic_allocation=_dump(allocation),
            targeting=targeting.model_dump(),
            primary_metric=primary_metric.model_dump() if primary_metric else None,
            secondary_metrics=_dump(secondary_metrics),
            confidence_level=data.confidence_level if data.confidence_level is not None else existing.confidence_level,
            scheduled_start_at=start,
            scheduled_end_at=end,
            created_by=data.created_by if data.created_by is not None else existing.created_by,
            created_at=now,
            updated_at=now
        )

        self._update_active_in_place(current, {"is_active": False, "updated_at": now})
        self.db.add(new_record)
        self._commit(f"Experiment {experiment_key} was modified concurrently")
        self.db.refresh(new_record)
        return Experiment.model_validate(new_record)

    def transition(
        self,
        platform: str,
        environment: str,
        experiment_key: str,
        action: str,
        winner: Optional[str] = None,
        expected_version: Optional[int] = None,
        expected_revision: Optional[int] = None
    ) -> Experiment:
        """
        Move an experiment through its lifecycle.

        draft -start-> running -pause-> paused -resume-> running
        running -complete-> completed -archive-> archived

        Raises:
            InvalidTransitionError: If the action is not allowed from the
                current status; nothing is written
            ValidationError: If `winner` is not one of the variations
        """
        current = self._active_record(platform, environment, experiment_key)
        self._check_expected(current, expected_version, expected_revision)

        new_status = next_status(current.status, action)
        now = utcnow()
        values = {"status": new_status.value, "updated_at": now}

        if action == "start":
            values["started_at"] = now
        elif action == "complete":
            variations = [Variation.model_validate(v) for v in current.variations]
            validate_winner(variations, winner)
            values["completed_at"] = now
            values["winner"] = winner

        self._update_active_in_place(current, values)
        self._commit(f"Experiment {experiment_key} was modified concurrently")
        return self.get_active(platform, environment, experiment_key)

    def update_traffic_allocation(
        self,
        platform: str,
        environment: str,
        experiment_key: str,
        traffic_allocation: List[TrafficSplit],
        expected_version: Optional[int] = None,
        expected_revision: Optional[int] = None
    ) -> Experiment:
        """
        Replace the traffic allocation in place (draft, running or paused).

        Raises:
            InvalidTransitionError: If the experiment is completed or archived
            ValidationError: If the allocation does not partition 100% over
                exactly the experiment's variations
        """
        current = self._active_record(platform, environment, experiment_key)
        self._check_expected(current, expected_version, expected_revision)

        if ExperimentStatus(current.status) not in ALLOCATION_EDITABLE:
            raise InvalidTransitionError(
                f"Cannot update traffic allocation for experiment in {current.status} status"
            )

        variations = [Variation.model_validate(v) for v in current.variations]
        validate_traffic_allocation(variations, traffic_allocation)

        self._update_active_in_place(current, {
            "traffic_allocation": _dump(traffic_allocation),
            "updated_at": utcnow()
        })
        self._commit(f"Experiment {experiment_key} was modified concurrently")
        return self.get_active(platform, environment, experiment_key)

    def delete(self, platform: str, environment: str, experiment_key: str) -> int:
        """
        Delete every version of an experiment.

        Raises:
            NotFoundError: If the key has no active version
            InvalidTransitionError: If the experiment is running
        """
        current = self._active_record(platform, environment, experiment_key)
        if current.status == ExperimentStatus.RUNNING.value:
            raise InvalidTransitionError("Cannot delete a running experiment, pause or complete it first")

        deleted = self.db.query(ExperimentVersion).filter(
            ExperimentVersion.platform == platform,
            ExperimentVersion.environment == environment,
            ExperimentVersion.experiment_key == experiment_key
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted
