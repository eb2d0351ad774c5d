"""Experiment decision engine and lifecycle state machine."""
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from flagkit.core.hashing import bucket, experiment_salt
from flagkit.core.targeting import VerdictKind, evaluate
from flagkit.exceptions import InvalidTransitionError
from flagkit.schemas.evaluation import ExperimentDecision
from flagkit.schemas.experiment import Experiment, ExperimentStatus, Variation
from flagkit.schemas.targeting import UserContext


class Reason:
    NOT_RUNNING = "Experiment is not running"
    NOT_STARTED = "Experiment has not reached its scheduled start"
    ENDED = "Experiment has passed its scheduled end"
    FORCE_EXCLUDED = "User is in force exclude list"
    FORCE_INCLUDED = "User is in force include list - serving control"
    NOT_IN_TARGET = "User does not match targeting criteria"
    HASH_ASSIGNMENT = "Assigned via consistent hash"


# (current status, action) -> next status
TRANSITIONS = {
    (ExperimentStatus.DRAFT, "start"): ExperimentStatus.RUNNING,
    (ExperimentStatus.RUNNING, "pause"): ExperimentStatus.PAUSED,
    (ExperimentStatus.PAUSED, "resume"): ExperimentStatus.RUNNING,
    (ExperimentStatus.RUNNING, "complete"): ExperimentStatus.COMPLETED,
    (ExperimentStatus.COMPLETED, "archive"): ExperimentStatus.ARCHIVED,
}

# Statuses in which traffic allocation may still change
ALLOCATION_EDITABLE = frozenset({
    ExperimentStatus.DRAFT,
    ExperimentStatus.RUNNING,
    ExperimentStatus.PAUSED,
})


def next_status(current: ExperimentStatus, action: str) -> ExperimentStatus:
    """Apply a lifecycle action, or raise InvalidTransitionError."""
    try:
        return TRANSITIONS[(ExperimentStatus(current), action)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {action} experiment in {ExperimentStatus(current).value} status"
        )


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC; callers may pass aware ones
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _not_eligible(experiment: Experiment, reason: str) -> ExperimentDecision:
    return ExperimentDecision(
        experiment_key=experiment.experiment_key,
        eligible=False,
        reason=reason
    )


def _assigned(experiment: Experiment, variation: Variation, reason: str, user_bucket=None) -> ExperimentDecision:
    return ExperimentDecision(
        experiment_key=experiment.experiment_key,
        eligible=True,
        variation_key=variation.key,
        value=variation.value,
        is_control=variation.is_control,
        record_exposure=True,
        reason=reason,
        bucket=user_bucket
    )


def allocate(experiment: Experiment, user_bucket: int) -> Variation:
    """
    Map a bucket onto the allocation's contiguous ranges, in list order.

    Example: [control 50, variant_a 30, variant_b 20] partitions [0, 100)
    into [0, 50) [50, 80) [80, 100).
    """
    variations = {v.key: v for v in experiment.variations}
    cumulative = 0
    for split in experiment.traffic_allocation:
        cumulative += split.percentage
        if user_bucket < cumulative:
            return variations[split.variation_key]

    # Unreachable when the allocation was validated to sum to 100
    return variations[experiment.traffic_allocation[-1].variation_key]


def decide_experiment(
    experiment: Experiment,
    context: UserContext,
    now: Optional[datetime] = None
) -> ExperimentDecision:
    """
    Decide which variation a context receives, if it is eligible at all.

    Pure and total. The scheduling window is only checked when the caller
    passes `now`; the engine never reads the clock.

    Steps:
        1. status must be running
        2. scheduled window (when `now` is given)
        3. force exclude -> not eligible; force include -> control
        4. country rules narrow eligibility, they never pick a variation
        5. weighted allocation over bucket(user_id, experiment key)
    """
    if experiment.status != ExperimentStatus.RUNNING:
        return _not_eligible(experiment, Reason.NOT_RUNNING)

    if now is not None:
        current = _as_utc(now)
        if experiment.scheduled_start_at and current < _as_utc(experiment.scheduled_start_at):
            return _not_eligible(experiment, Reason.NOT_STARTED)
        if experiment.scheduled_end_at and current >= _as_utc(experiment.scheduled_end_at):
            return _not_eligible(experiment, Reason.ENDED)

    verdict = evaluate(experiment.targeting, context)

    if verdict.kind is VerdictKind.FORCED_EXCLUDE:
        return _not_eligible(experiment, Reason.FORCE_EXCLUDED)

    if verdict.kind is VerdictKind.FORCED_INCLUDE:
        return _assigned(experiment, experiment.control, Reason.FORCE_INCLUDED)

    if verdict.kind is VerdictKind.NO_MATCH and experiment.targeting.countries:
        return _not_eligible(experiment, Reason.NOT_IN_TARGET)

    user_bucket = bucket(context.user_id, experiment_salt(experiment.experiment_key))
    variation = allocate(experiment, user_bucket)
    return _assigned(experiment, variation, Reason.HASH_ASSIGNMENT, user_bucket)


def decide_experiments(
    experiments: Iterable[Experiment],
    context: UserContext,
    now: Optional[datetime] = None
) -> Dict[str, ExperimentDecision]:
    """Decide several experiments, keeping only the ones the context is in."""
    decisions = {}
    for experiment in experiments:
        decision = decide_experiment(experiment, context, now)
        if decision.eligible:
            decisions[experiment.experiment_key] = decision
    return decisions
