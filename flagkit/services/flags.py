"""Versioned store for feature flags."""
from typing import List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flagkit.core.flags import DEFAULT_ROLLOUT, RolloutDefaults
from flagkit.core.validation import validate_flag_values, validate_rollout
from flagkit.database import utcnow
from flagkit.exceptions import ConflictError, NotFoundError, ValidationError
from flagkit.models.flag import FlagVersion
from flagkit.schemas.evaluation import Page
from flagkit.schemas.flag import Flag, FlagCreate, FlagUpdate, RolloutUpdate
from flagkit.services.pagination import decode_cursor, encode_cursor

# FlagUpdate fields that never need a new version
IN_PLACE_FIELDS = frozenset({"enabled", "rollout_enabled", "rollout_percentage_a", "rollout_percentage_b"})
PRECONDITION_FIELDS = frozenset({"expected_version", "expected_revision"})


def resolve_rollout(
    enabled: Optional[bool],
    percentage_a: Optional[int],
    percentage_b: Optional[int],
    base: Tuple[bool, int, int]
) -> Tuple[bool, int, int]:
    """
    Merge a partial rollout change onto a base (enabled, A, B).

    When only one percentage is given the other becomes 100 minus it.
    """
    base_enabled, base_a, base_b = base

    if percentage_a is not None and percentage_b is None:
        percentage_b = 100 - percentage_a
    elif percentage_b is not None and percentage_a is None:
        percentage_a = 100 - percentage_b
    elif percentage_a is None and percentage_b is None:
        percentage_a, percentage_b = base_a, base_b

    return (base_enabled if enabled is None else enabled), percentage_a, percentage_b


class FlagService:
    """
    Store for flags as append-only versions with one active version per key.

    Edits create a new version and retire the old one in the same
    transaction. Toggle and rollout changes update the active version in
    place. Every write bumps `revision` and is conditional on the revision
    it read, so a racing writer gets a ConflictError instead of a lost update.
    """

    def __init__(self, db: Session, rollout_defaults: RolloutDefaults = DEFAULT_ROLLOUT):
        self.db = db
        self.rollout_defaults = rollout_defaults

    # -- reads -------------------------------------------------------------

    def _active_query(self, platform: str, environment: str, flag_key: str):
        return self.db.query(FlagVersion).filter(
            FlagVersion.platform == platform,
            FlagVersion.environment == environment,
            FlagVersion.flag_key == flag_key,
            FlagVersion.is_active == True
        )

    def _active_record(self, platform: str, environment: str, flag_key: str) -> FlagVersion:
        record = self._active_query(platform, environment, flag_key).first()
        if not record:
            raise NotFoundError(f"Feature flag not found: {flag_key}")
        return record

    def find_active(self, platform: str, environment: str, flag_key: str) -> Optional[Flag]:
        """Get the active version, or None."""
        record = self._active_query(platform, environment, flag_key).first()
        return Flag.model_validate(record) if record else None

    def get_active(self, platform: str, environment: str, flag_key: str) -> Flag:
        """
        Get the active version of a flag.

        Raises:
            NotFoundError: If the key has no active version
        """
        return Flag.model_validate(self._active_record(platform, environment, flag_key))

    def get_version(self, platform: str, environment: str, flag_key: str, version: int) -> Flag:
        record = self.db.query(FlagVersion).filter(
            FlagVersion.platform == platform,
            FlagVersion.environment == environment,
            FlagVersion.flag_key == flag_key,
            FlagVersion.version == version
        ).first()
        if not record:
            raise NotFoundError(f"Feature flag version not found: {flag_key} v{version}")
        return Flag.model_validate(record)

    def exists(self, platform: str, environment: str, flag_key: str) -> bool:
        return self._active_query(platform, environment, flag_key).first() is not None

    def list_active(
        self,
        platform: str,
        environment: str,
        limit: int = 100,
        cursor: Optional[str] = None
    ) -> Page[Flag]:
        """
        List active flags ordered by key.

        Args:
            limit: Page size
            cursor: Opaque cursor from a previous page

        Raises:
            ValidationError: If the cursor is malformed
        """
        offset = decode_cursor(cursor)
        records = self.db.query(FlagVersion).filter(
            FlagVersion.platform == platform,
            FlagVersion.environment == environment,
            FlagVersion.is_active == True
        ).order_by(FlagVersion.flag_key.asc()).offset(offset).limit(limit + 1).all()

        has_more = len(records) > limit
        return Page[Flag](
            items=[Flag.model_validate(r) for r in records[:limit]],
            next_cursor=encode_cursor(offset + limit) if has_more else None,
            has_more=has_more
        )

    def list_all_active(self, platform: str, environment: str) -> List[Flag]:
        """Every active flag for a platform/environment (batch evaluation)."""
        records = self.db.query(FlagVersion).filter(
            FlagVersion.platform == platform,
            FlagVersion.environment == environment,
            FlagVersion.is_active == True
        ).order_by(FlagVersion.flag_key.asc()).all()
        return [Flag.model_validate(r) for r in records]

    def list_versions(self, platform: str, environment: str, flag_key: str) -> List[Flag]:
        """All versions of a flag, newest first."""
        records = self.db.query(FlagVersion).filter(
            FlagVersion.platform == platform,
            FlagVersion.environment == environment,
            FlagVersion.flag_key == flag_key
        ).order_by(FlagVersion.version.desc()).all()
        if not records:
            raise NotFoundError(f"Feature flag not found: {flag_key}")
        return [Flag.model_validate(r) for r in records]

    # -- writes ------------------------------------------------------------

    def _commit(self, conflict_message: str) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(conflict_message)

    @staticmethod
    def _check_expected(
        record: FlagVersion,
        expected_version: Optional[int] = None,
        expected_revision: Optional[int] = None
    ) -> None:
        if expected_version is not None and record.version != expected_version:
            raise ConflictError(
                f"Feature flag {record.flag_key} is at version {record.version}, "
                f"expected {expected_version}"
            )
        if expected_revision is not None and record.revision != expected_revision:
            raise ConflictError(
                f"Feature flag {record.flag_key} is at revision {record.revision}, "
                f"expected {expected_revision}"
            )

    def _update_active_in_place(self, record: FlagVersion, values: dict) -> None:
        # Conditional on the revision we read: 0 rows means someone else won.
        # Every write bumps the revision, in-place changes included.
        updated = self._active_query(record.platform, record.environment, record.flag_key).filter(
            FlagVersion.version == record.version,
            FlagVersion.revision == record.revision
        ).update(dict(values, revision=record.revision + 1), synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            raise ConflictError(f"Feature flag {record.flag_key} was modified concurrently")

    def _update_switches(
        self,
        current: FlagVersion,
        enabled: Optional[bool] = None,
        rollout_enabled: Optional[bool] = None,
        percentage_a: Optional[int] = None,
        percentage_b: Optional[int] = None
    ) -> Flag:
        """Apply enabled and rollout changes to the active version in place."""
        rollout_enabled, percentage_a, percentage_b = resolve_rollout(
            rollout_enabled,
            percentage_a,
            percentage_b,
            base=(current.rollout_enabled, current.rollout_percentage_a, current.rollout_percentage_b)
        )
        validate_rollout(percentage_a, percentage_b)

        values = {
            "rollout_enabled": rollout_enabled,
            "rollout_percentage_a": percentage_a,
            "rollout_percentage_b": percentage_b,
            "updated_at": utcnow()
        }
        if enabled is not None:
            values["enabled"] = enabled

        platform, environment, flag_key = current.platform, current.environment, current.flag_key
        self._update_active_in_place(current, values)
        self._commit(f"Feature flag {flag_key} was modified concurrently")
        return self.get_active(platform, environment, flag_key)

    def create(self, platform: str, environment: str, data: FlagCreate) -> Flag:
        """
        Create version 1 of a flag.

        Boolean flags default to value_a=True, value_b=False. Rollout fields
        not given come from the store's RolloutDefaults.

        Raises:
            ConflictError: If the key already exists
            ValidationError: If values or rollout break an invariant
        """
        if self.exists(platform, environment, data.flag_key):
            raise ConflictError(f"Feature flag already exists: {data.flag_key}")

        value_a, value_b = data.value_a, data.value_b
        if data.flag_type == "boolean":
            value_a = True if value_a is None else value_a
            value_b = False if value_b is None else value_b
        elif value_a is None or value_b is None:
            raise ValidationError(f"value_a and value_b are required for {data.flag_type} flags")
        validate_flag_values(data.flag_type, value_a, value_b)

        defaults = self.rollout_defaults
        rollout_enabled, percentage_a, percentage_b = resolve_rollout(
            data.rollout_enabled,
            data.rollout_percentage_a,
            data.rollout_percentage_b,
            base=(defaults.enabled, defaults.percentage_a, defaults.percentage_b)
        )
        validate_rollout(percentage_a, percentage_b)

        now = utcnow()
        record = FlagVersion(
            platform=platform,
            environment=environment,
            flag_key=data.flag_key,
            version=1,
            revision=1,
            is_active=True,
            name=data.name,
            description=data.description,
            enabled=data.enabled,
            flag_type=data.flag_type,
            value_a=value_a,
            value_b=value_b,
            targeting=data.targeting.model_dump(),
            rollout_enabled=rollout_enabled,
            rollout_percentage_a=percentage_a,
            rollout_percentage_b=percentage_b,
            created_by=data.created_by,
            created_at=now,
            updated_at=now
        )
        self.db.add(record)
        self._commit(f"Feature flag already exists: {data.flag_key}")
        self.db.refresh(record)
        return Flag.model_validate(record)

    def update(self, platform: str, environment: str, flag_key: str, data: FlagUpdate) -> Flag:
        """
        Edit a flag by creating a new version.

        Unspecified fields are copied forward. The old version is retired and
        the new one inserted in a single transaction. A payload that only
        carries `enabled` and rollout fields is applied in place instead,
        like toggle and update_rollout.

        Raises:
            NotFoundError: If the key has no active version
            ConflictError: If another writer changed the flag first
            ValidationError: If the merged flag breaks an invariant
        """
        current = self._active_record(platform, environment, flag_key)
        self._check_expected(current, data.expected_version, data.expected_revision)

        if data.model_fields_set - PRECONDITION_FIELDS <= IN_PLACE_FIELDS:
            return self._update_switches(
                current,
                enabled=data.enabled,
                rollout_enabled=data.rollout_enabled,
                percentage_a=data.rollout_percentage_a,
                percentage_b=data.rollout_percentage_b
            )

        value_a = current.value_a if data.value_a is None else data.value_a
        value_b = current.value_b if data.value_b is None else data.value_b
        validate_flag_values(current.flag_type, value_a, value_b)

        rollout_enabled, percentage_a, percentage_b = resolve_rollout(
            data.rollout_enabled,
            data.rollout_percentage_a,
            data.rollout_percentage_b,
            base=(current.rollout_enabled, current.rollout_percentage_a, current.rollout_percentage_b)
        )
        validate_rollout(percentage_a, percentage_b)

        now = utcnow()
        new_record = FlagVersion(
            platform=platform,
            environment=environment,
            flag_key=flag_key,
            version=current.version + 1,
            revision=current.revision + 1,
            is_active=True,
            name=data.name if data.name is not None else current.name,
            description=data.description if data.description is not None else current.description,
            enabled=data.enabled if data.enabled is not None else current.enabled,
            flag_type=current.flag_type,
            value_a=value_a,
            value_b=value_b,
            targeting=data.targeting.model_dump() if data.targeting is not None else current.targeting,
            rollout_enabled=rollout_enabled,
            rollout_percentage_a=percentage_a,
            rollout_percentage_b=percentage_b,
            created_by=data.created_by if data.created_by is not None else current.created_by,
            created_at=now,
            updated_at=now
        )

        # Retire first so the partial unique index never sees two actives
        self._update_active_in_place(current, {"is_active": False, "updated_at": now})
        self.db.add(new_record)
        self._commit(f"Feature flag {flag_key} was modified concurrently")
        self.db.refresh(new_record)
        return Flag.model_validate(new_record)

    def toggle(
        self,
        platform: str,
        environment: str,
        flag_key: str,
        enabled: bool,
        expected_version: Optional[int] = None,
        expected_revision: Optional[int] = None
    ) -> Flag:
        """Switch a flag on or off in place. No new version is created."""
        current = self._active_record(platform, environment, flag_key)
        self._check_expected(current, expected_version, expected_revision)
        return self._update_switches(current, enabled=enabled)

    def update_rollout(self, platform: str, environment: str, flag_key: str, data: RolloutUpdate) -> Flag:
        """
        Change rollout settings in place. No new version is created.

        Raises:
            ValidationError: If the resulting percentages do not sum to 100
        """
        current = self._active_record(platform, environment, flag_key)
        self._check_expected(current, data.expected_version, data.expected_revision)
        return self._update_switches(
            current,
            rollout_enabled=data.rollout_enabled,
            percentage_a=data.rollout_percentage_a,
            percentage_b=data.rollout_percentage_b
        )

    def delete(self, platform: str, environment: str, flag_key: str) -> int:
        """
        Delete every version of a flag.

        Returns:
            Number of versions removed

        Raises:
            NotFoundError: If the key has no versions
        """
        deleted = self.db.query(FlagVersion).filter(
            FlagVersion.platform == platform,
            FlagVersion.environment == environment,
            FlagVersion.flag_key == flag_key
        ).delete(synchronize_session=False)

        if deleted == 0:
            self.db.rollback()
            raise NotFoundError(f"Feature flag not found: {flag_key}")

        self.db.commit()
        return deleted
