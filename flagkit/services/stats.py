"""Evaluation stats sink backed by Redis hash counters.

Recording is best effort: it runs after the response is sent and a
Redis failure is logged, never surfaced to the SDK caller.
"""
import redis
from functools import lru_cache
from typing import Dict, List, Optional

from flagkit.config import get_settings
from flagkit.middleware.logging import get_logger
from flagkit.schemas.evaluation import ExposureEvent

logger = get_logger()


def _as_counts(raw: Dict) -> Dict[str, int]:
    return {
        (k.decode() if isinstance(k, bytes) else k): int(v)
        for k, v in (raw or {}).items()
    }


class StatsRecorder:
    """Redis-based evaluation and exposure counters."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    @staticmethod
    def _flag_key(platform: str, environment: str, flag_key: str) -> str:
        return f"stats:flag:{platform}:{environment}:{flag_key}"

    @staticmethod
    def _experiment_key(platform: str, environment: str, experiment_key: str) -> str:
        return f"stats:experiment:{platform}:{environment}:{experiment_key}"

    def record(self, event: ExposureEvent) -> None:
        """
        Increment the counters for one decision.

        Flag evaluations count `total`, `value_a`/`value_b` and a per-country
        split; experiment exposures count `exposures` and `variation:{key}`.

        Example:
            >>> recorder = StatsRecorder(redis_client)
            >>> recorder.record(ExposureEvent(type="flag_evaluation", ...))
        """
        try:
            pipe = self.redis.pipeline()
            if event.type == "flag_evaluation":
                key = self._flag_key(event.platform, event.environment, event.key)
                pipe.hincrby(key, "total", 1)
                pipe.hincrby(key, f"value_{event.variation_or_value.lower()}", 1)
                if event.country:
                    pipe.hincrby(key, f"country:{event.country}:{event.variation_or_value}", 1)
            else:
                key = self._experiment_key(event.platform, event.environment, event.key)
                pipe.hincrby(key, "exposures", 1)
                pipe.hincrby(key, f"variation:{event.variation_or_value}", 1)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(
                "stats_record_failed",
                event_type=event.type,
                key=event.key,
                error=str(e),
                error_type=type(e).__name__
            )

    def get_flag_counts(self, platform: str, environment: str, flag_key: str) -> Dict[str, int]:
        return _as_counts(self.redis.hgetall(self._flag_key(platform, environment, flag_key)))

    def get_experiment_counts(self, platform: str, environment: str, experiment_key: str) -> Dict[str, int]:
        return _as_counts(self.redis.hgetall(self._experiment_key(platform, environment, experiment_key)))


@lru_cache()
def get_stats_recorder() -> Optional[StatsRecorder]:
    """Shared recorder, or None when stats are disabled."""
    settings = get_settings()
    if not settings.stats_enabled:
        return None
    redis_client = redis.from_url(
        settings.redis_url,
        socket_timeout=settings.redis_timeout_seconds,
        socket_connect_timeout=settings.redis_timeout_seconds
    )
    return StatsRecorder(redis_client)


def record_events(recorder: Optional[StatsRecorder], events: List[ExposureEvent]) -> None:
    """Background task body: record every event, never raise."""
    if recorder is None:
        return
    for event in events:
        recorder.record(event)
