"""Pure decision engine: bucketing, targeting, flag and experiment decisions."""
from flagkit.core.hashing import bucket, flag_salt, experiment_salt
from flagkit.core.targeting import Verdict, VerdictKind, evaluate
from flagkit.core.flags import DEFAULT_ROLLOUT, RolloutDefaults, decide_flag, decide_flags, is_enabled
from flagkit.core.experiments import decide_experiment, decide_experiments, next_status

__all__ = [
    "bucket",
    "flag_salt",
    "experiment_salt",
    "Verdict",
    "VerdictKind",
    "evaluate",
    "DEFAULT_ROLLOUT",
    "RolloutDefaults",
    "decide_flag",
    "decide_flags",
    "is_enabled",
    "decide_experiment",
    "decide_experiments",
    "next_status",
]
