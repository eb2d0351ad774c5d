"""Flag decision engine: which of the two values a context receives."""
from dataclasses import dataclass
from typing import Dict, Iterable

from flagkit.core.hashing import bucket, flag_salt
from flagkit.core.targeting import VerdictKind, evaluate
from flagkit.exceptions import ValidationError
from flagkit.schemas.evaluation import FlagDecision
from flagkit.schemas.flag import Flag
from flagkit.schemas.targeting import ServeValue, UserContext


class Reason:
    FLAG_DISABLED = "Flag is disabled - serving value A"
    FORCE_EXCLUDED = "User is in force exclude list - serving value A"
    FORCE_INCLUDED = "User is in force include list - serving value A"
    COUNTRY_LANGUAGE_MATCH = "Matched country and language targeting"
    COUNTRY_MATCH = "Matched country targeting"
    ROLLOUT_DISABLED = "Rollout is disabled - serving value A"
    ROLLOUT_PERCENTAGE = "Assigned via percentage rollout"


@dataclass(frozen=True)
class RolloutDefaults:
    """The one canonical rollout baseline: rollout off, everyone gets A."""

    enabled: bool = False
    percentage_a: int = 100
    percentage_b: int = 0


DEFAULT_ROLLOUT = RolloutDefaults()

# Country rules without an explicit override serve B
RULE_DEFAULT_SERVE: ServeValue = "B"


def _decision(flag: Flag, served: ServeValue, source: str, reason: str, user_bucket=None) -> FlagDecision:
    return FlagDecision(
        flag_key=flag.flag_key,
        value=flag.value_a if served == "A" else flag.value_b,
        served_value=served,
        source=source,
        reason=reason,
        bucket=user_bucket
    )


def decide_flag(flag: Flag, context: UserContext) -> FlagDecision:
    """
    Decide which value a context receives for a flag.

    Pure and total: no I/O, no clock, never raises for a valid flag.

    Priority:
        1. disabled flag            -> A (source "disabled")
        2. force exclude / include  -> A (source "forced")
        3. matching country rule    -> rule.serve_value or B (source "rule")
        4. rollout off              -> A (source "rollout")
        5. rollout on               -> A if bucket < rollout_percentage_a else B
    """
    if not flag.enabled:
        return _decision(flag, "A", "disabled", Reason.FLAG_DISABLED)

    verdict = evaluate(flag.targeting, context)

    if verdict.kind is VerdictKind.FORCED_EXCLUDE:
        return _decision(flag, "A", "forced", Reason.FORCE_EXCLUDED)

    if verdict.kind is VerdictKind.FORCED_INCLUDE:
        return _decision(flag, "A", "forced", Reason.FORCE_INCLUDED)

    if verdict.kind is VerdictKind.RULE_MATCH:
        reason = Reason.COUNTRY_LANGUAGE_MATCH if verdict.rule.languages else Reason.COUNTRY_MATCH
        return _decision(flag, verdict.serve_value or RULE_DEFAULT_SERVE, "rule", reason)

    if not flag.rollout_enabled:
        return _decision(flag, "A", "rollout", Reason.ROLLOUT_DISABLED)

    user_bucket = bucket(context.user_id, flag_salt(flag.flag_key))
    served: ServeValue = "A" if user_bucket < flag.rollout_percentage_a else "B"
    return _decision(flag, served, "rollout", Reason.ROLLOUT_PERCENTAGE, user_bucket)


def decide_flags(flags: Iterable[Flag], context: UserContext) -> Dict[str, FlagDecision]:
    """Decide several flags for one context, keyed by flag key."""
    return {flag.flag_key: decide_flag(flag, context) for flag in flags}


def is_enabled(flag: Flag, context: UserContext) -> bool:
    """Convenience for boolean flags: True when the served value is true."""
    if flag.flag_type != "boolean":
        raise ValidationError(
            f"is_enabled() needs a boolean flag, '{flag.flag_key}' is {flag.flag_type}"
        )
    return decide_flag(flag, context).value is True
