"""Tests for the experiment decision engine and lifecycle."""
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from flagkit.core.experiments import allocate, decide_experiment, decide_experiments, next_status
from flagkit.exceptions import InvalidTransitionError
from flagkit.schemas.experiment import Experiment, ExperimentStatus, TrafficSplit, Variation
from flagkit.schemas.targeting import CountryRule, TargetingRules, UserContext


def make_experiment(**overrides) -> Experiment:
    now = datetime(2024, 1, 1)
    fields = dict(
        platform="web",
        environment="production",
        experiment_key="checkout_test",
        version=1,
        is_active=True,
        name="Checkout test",
        status=ExperimentStatus.RUNNING,
        variations=[
            Variation(key="control", name="Control", value="old", is_control=True),
            Variation(key="variant_1", name="Variant 1", value="new"),
        ],
        traffic_allocation=[
            TrafficSplit(variation_key="control", percentage=50),
            TrafficSplit(variation_key="variant_1", percentage=50),
        ],
        created_at=now,
        updated_at=now
    )
    fields.update(overrides)
    return Experiment(**fields)


def test_draft_experiment_is_not_eligible():
    """Test that nobody is assigned before the experiment starts."""
    experiment = make_experiment(status=ExperimentStatus.DRAFT)

    for user_id in ("u1", "u2", "vip"):
        decision = decide_experiment(experiment, UserContext(user_id=user_id))
        assert decision.eligible is False
        assert decision.record_exposure is False
        assert decision.variation_key is None


def test_force_include_gets_control(monkeypatch):
    """Test that force-included users get control whatever their bucket."""
    monkeypatch.setattr("flagkit.core.experiments.bucket", lambda identifier, salt: 99)
    experiment = make_experiment(targeting=TargetingRules(force_include_users=["vip"]))

    decision = decide_experiment(experiment, UserContext(user_id="vip"))

    assert decision.eligible is True
    assert decision.variation_key == "control"
    assert decision.is_control is True
    assert decision.record_exposure is True


def test_force_exclude_is_not_eligible():
    experiment = make_experiment(targeting=TargetingRules(force_exclude_users=["qa"]))

    decision = decide_experiment(experiment, UserContext(user_id="qa"))

    assert decision.eligible is False


def test_allocation_covers_buckets_exactly():
    """Test that each variation owns exactly its percentage of buckets."""
    experiment = make_experiment(
        variations=[
            Variation(key="control", name="Control", is_control=True),
            Variation(key="variant_a", name="A"),
            Variation(key="variant_b", name="B"),
        ],
        traffic_allocation=[
            TrafficSplit(variation_key="control", percentage=50),
            TrafficSplit(variation_key="variant_a", percentage=30),
            TrafficSplit(variation_key="variant_b", percentage=20),
        ]
    )

    owners = Counter(allocate(experiment, b).key for b in range(100))

    assert owners == {"control": 50, "variant_a": 30, "variant_b": 20}
    assert allocate(experiment, 49).key == "control"
    assert allocate(experiment, 50).key == "variant_a"
    assert allocate(experiment, 80).key == "variant_b"


def test_zero_percent_variation_is_never_assigned():
    experiment = make_experiment(traffic_allocation=[
        TrafficSplit(variation_key="control", percentage=100),
        TrafficSplit(variation_key="variant_1", percentage=0),
    ])

    assert {allocate(experiment, b).key for b in range(100)} == {"control"}


def test_assignment_is_deterministic_and_roughly_weighted():
    experiment = make_experiment()

    first = [decide_experiment(experiment, UserContext(user_id=f"user_{i}")).variation_key for i in range(1000)]
    second = [decide_experiment(experiment, UserContext(user_id=f"user_{i}")).variation_key for i in range(1000)]

    assert first == second
    control_pct = first.count("control") / 1000 * 100
    assert 40 <= control_pct <= 60, f"Control should be ~50%, got {control_pct}%"


def test_country_rules_narrow_eligibility():
    """Test that country rules only decide who is in, never which variation."""
    experiment = make_experiment(targeting=TargetingRules(countries=[CountryRule(country="US")]))

    outside = decide_experiment(experiment, UserContext(user_id="u", country="DE"))
    unknown = decide_experiment(experiment, UserContext(user_id="u"))
    inside = decide_experiment(experiment, UserContext(user_id="u", country="US"))

    assert outside.eligible is False
    assert unknown.eligible is False
    assert inside.eligible is True
    assert inside.bucket is not None


def test_schedule_window_checked_only_when_now_given():
    start = datetime(2024, 6, 1)
    end = datetime(2024, 7, 1)
    experiment = make_experiment(scheduled_start_at=start, scheduled_end_at=end)
    context = UserContext(user_id="u")

    assert decide_experiment(experiment, context).eligible is True
    assert decide_experiment(experiment, context, now=start - timedelta(days=1)).eligible is False
    assert decide_experiment(experiment, context, now=start).eligible is True
    assert decide_experiment(experiment, context, now=end).eligible is False


def test_schedule_accepts_timezone_aware_now():
    experiment = make_experiment(scheduled_start_at=datetime(2024, 6, 1))

    decision = decide_experiment(
        experiment,
        UserContext(user_id="u"),
        now=datetime(2024, 6, 2, tzinfo=timezone.utc)
    )

    assert decision.eligible is True


def test_decide_experiments_keeps_only_eligible():
    running = make_experiment(experiment_key="running")
    paused = make_experiment(experiment_key="paused", status=ExperimentStatus.PAUSED)

    decisions = decide_experiments([running, paused], UserContext(user_id="u"))

    assert list(decisions) == ["running"]


@pytest.mark.parametrize("current,action,expected", [
    (ExperimentStatus.DRAFT, "start", ExperimentStatus.RUNNING),
    (ExperimentStatus.RUNNING, "pause", ExperimentStatus.PAUSED),
    (ExperimentStatus.PAUSED, "resume", ExperimentStatus.RUNNING),
    (ExperimentStatus.RUNNING, "complete", ExperimentStatus.COMPLETED),
    (ExperimentStatus.COMPLETED, "archive", ExperimentStatus.ARCHIVED),
])
def test_allowed_transitions(current, action, expected):
    assert next_status(current, action) == expected


@pytest.mark.parametrize("current,action", [
    (ExperimentStatus.DRAFT, "pause"),
    (ExperimentStatus.DRAFT, "complete"),
    (ExperimentStatus.PAUSED, "complete"),
    (ExperimentStatus.RUNNING, "start"),
    (ExperimentStatus.ARCHIVED, "resume"),
    (ExperimentStatus.COMPLETED, "start"),
])
def test_invalid_transitions(current, action):
    with pytest.raises(InvalidTransitionError):
        next_status(current, action)
