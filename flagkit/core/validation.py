"""Write-time invariant checks. Nothing is persisted unless these pass."""
from datetime import datetime
from typing import List, Optional

from flagkit.exceptions import ValidationError
from flagkit.schemas.experiment import TrafficSplit, Variation
from flagkit.schemas.targeting import TargetingRules

_VALUE_TYPES = {
    "boolean": (bool,),
    "string": (str,),
    "number": (int, float),
}


def validate_flag_values(flag_type: str, value_a, value_b) -> None:
    """Both values must be of the flag's declared type."""
    expected = _VALUE_TYPES.get(flag_type)
    if expected is None:
        raise ValidationError(f"Unknown flag type: {flag_type}")

    for label, value in (("value_a", value_a), ("value_b", value_b)):
        # bool is an int subclass, never accept it as a number
        if isinstance(value, bool) and flag_type != "boolean":
            raise ValidationError(f"{label} must be a {flag_type}, got a boolean")
        if not isinstance(value, expected):
            raise ValidationError(
                f"{label} must be a {flag_type}, got {type(value).__name__}"
            )


def validate_rollout(percentage_a: int, percentage_b: int) -> None:
    for label, value in (("rollout_percentage_a", percentage_a), ("rollout_percentage_b", percentage_b)):
        if not 0 <= value <= 100:
            raise ValidationError(f"{label} must be between 0 and 100, got {value}")
    if percentage_a + percentage_b != 100:
        raise ValidationError(
            f"rollout_percentage_a + rollout_percentage_b must equal 100, "
            f"got {percentage_a + percentage_b}"
        )


def validate_variations(variations: List[Variation]) -> None:
    if len(variations) < 2:
        raise ValidationError("An experiment needs at least 2 variations")

    keys = [v.key for v in variations]
    if len(set(keys)) != len(keys):
        raise ValidationError("Variation keys must be unique")

    controls = [v.key for v in variations if v.is_control]
    if len(controls) != 1:
        raise ValidationError(
            f"Exactly one variation must be the control, got {len(controls)}"
        )


def validate_traffic_allocation(variations: List[Variation], allocation: List[TrafficSplit]) -> None:
    """
    Allocation must partition [0, 100) over the variations.

    Every variation appears exactly once, no unknown keys, and the
    percentages sum to exactly 100.
    """
    variation_keys = {v.key for v in variations}
    seen = set()
    for split in allocation:
        if split.variation_key not in variation_keys:
            raise ValidationError(f"Unknown variation key: {split.variation_key}")
        if split.variation_key in seen:
            raise ValidationError(f"Variation allocated twice: {split.variation_key}")
        seen.add(split.variation_key)

    missing = variation_keys - seen
    if missing:
        raise ValidationError(
            f"Traffic allocation is missing variations: {', '.join(sorted(missing))}"
        )

    total = sum(split.percentage for split in allocation)
    if total != 100:
        raise ValidationError(f"Traffic allocation must sum to 100%, got {total}%")


def validate_experiment_targeting(targeting: TargetingRules) -> None:
    for rule in targeting.countries:
        if rule.serve_value is not None:
            raise ValidationError(
                f"Experiment country rule {rule.country} cannot force a serve value"
            )


def validate_schedule(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start and end and start >= end:
        raise ValidationError("scheduled_start_at must be before scheduled_end_at")


def validate_experiment_definition(
    variations: List[Variation],
    allocation: List[TrafficSplit],
    targeting: TargetingRules,
    scheduled_start_at: Optional[datetime] = None,
    scheduled_end_at: Optional[datetime] = None
) -> None:
    validate_variations(variations)
    validate_traffic_allocation(variations, allocation)
    validate_experiment_targeting(targeting)
    validate_schedule(scheduled_start_at, scheduled_end_at)


def validate_winner(variations: List[Variation], winner: Optional[str]) -> None:
    if winner is not None and winner not in {v.key for v in variations}:
        raise ValidationError(f"Winner is not a variation of this experiment: {winner}")
