"""Targeting rule evaluation shared by flags and experiments."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from flagkit.schemas.targeting import CountryRule, ServeValue, TargetingRules, UserContext


class VerdictKind(str, Enum):
    FORCED_EXCLUDE = "forced_exclude"
    FORCED_INCLUDE = "forced_include"
    RULE_MATCH = "rule_match"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class Verdict:
    kind: VerdictKind
    serve_value: Optional[ServeValue] = None
    rule: Optional[CountryRule] = None


NO_MATCH = Verdict(VerdictKind.NO_MATCH)


def _rule_matches(rule: CountryRule, context: UserContext) -> bool:
    # A missing country or language is never a wildcard
    if not context.country or context.country.upper() != rule.country.upper():
        return False
    if not rule.languages:
        return True
    if not context.language:
        return False
    language = context.language.lower()
    return any(language == candidate.lower() for candidate in rule.languages)


def evaluate(rules: TargetingRules, context: UserContext) -> Verdict:
    """
    Evaluate targeting for a context. First match wins.

    Order:
        1. force_exclude_users  -> FORCED_EXCLUDE (wins over include on overlap)
        2. force_include_users  -> FORCED_INCLUDE
        3. country rules in list order -> RULE_MATCH(rule.serve_value)
        4. otherwise            -> NO_MATCH
    """
    if context.user_id in rules.force_exclude_users:
        return Verdict(VerdictKind.FORCED_EXCLUDE)

    if context.user_id in rules.force_include_users:
        return Verdict(VerdictKind.FORCED_INCLUDE)

    for rule in rules.countries:
        if _rule_matches(rule, context):
            return Verdict(VerdictKind.RULE_MATCH, serve_value=rule.serve_value, rule=rule)

    return NO_MATCH
