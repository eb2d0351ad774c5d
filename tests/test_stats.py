"""Tests for the Redis stats sink."""
from unittest.mock import MagicMock

import redis

from flagkit.schemas.evaluation import ExposureEvent
from flagkit.services.stats import StatsRecorder, record_events


def flag_event(**overrides) -> ExposureEvent:
    fields = dict(
        type="flag_evaluation",
        platform="web",
        environment="production",
        key="dark-mode",
        variation_or_value="B",
        user_id="u1",
        country="US"
    )
    fields.update(overrides)
    return ExposureEvent(**fields)


def test_flag_evaluation_counters():
    """Test that a flag evaluation bumps total, value and country counters."""
    redis_client = MagicMock()
    pipe = redis_client.pipeline.return_value

    StatsRecorder(redis_client).record(flag_event())

    key = "stats:flag:web:production:dark-mode"
    pipe.hincrby.assert_any_call(key, "total", 1)
    pipe.hincrby.assert_any_call(key, "value_b", 1)
    pipe.hincrby.assert_any_call(key, "country:US:B", 1)
    pipe.execute.assert_called_once()


def test_flag_evaluation_without_country():
    redis_client = MagicMock()
    pipe = redis_client.pipeline.return_value

    StatsRecorder(redis_client).record(flag_event(country=None))

    assert pipe.hincrby.call_count == 2


def test_experiment_exposure_counters():
    redis_client = MagicMock()
    pipe = redis_client.pipeline.return_value

    StatsRecorder(redis_client).record(flag_event(
        type="experiment_exposure",
        key="checkout-test",
        variation_or_value="variant_1"
    ))

    key = "stats:experiment:web:production:checkout-test"
    pipe.hincrby.assert_any_call(key, "exposures", 1)
    pipe.hincrby.assert_any_call(key, "variation:variant_1", 1)


def test_redis_failure_is_swallowed():
    """Test that stats never break evaluation when Redis is down."""
    redis_client = MagicMock()
    redis_client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")

    StatsRecorder(redis_client).record(flag_event())


def test_counts_are_decoded():
    redis_client = MagicMock()
    redis_client.hgetall.return_value = {b"total": b"3", b"value_a": b"2"}

    counts = StatsRecorder(redis_client).get_flag_counts("web", "production", "dark-mode")

    assert counts == {"total": 3, "value_a": 2}


def test_record_events_without_recorder_is_noop():
    record_events(None, [flag_event()])


def test_record_events_records_each_event():
    recorder = MagicMock()

    record_events(recorder, [flag_event(), flag_event(user_id="u2")])

    assert recorder.record.call_count == 2
