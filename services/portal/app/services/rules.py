from typing import List, Sequence

from schemas.models import DEFAULT, RedirectRule
from app.errors import NoRedirectRuleError


def rule_matches(rule: RedirectRule, from_status: str, gas_status: str) -> bool:
    from_ok = DEFAULT in rule.from_set or from_status in rule.from_set
    gas_ok = DEFAULT in rule.gas_set or gas_status in rule.gas_set
    return from_ok and gas_ok


def match(from_status: str, gas_status: str, rules: Sequence[RedirectRule]) -> RedirectRule:
    """
    First rule (in declaration order) whose from-set and gas-set accept the pair.
    Specific rules must be declared before the default/default fallback.
    """
    for rule in rules:
        if rule_matches(rule, from_status, gas_status):
            return rule
    raise NoRedirectRuleError(from_status, gas_status)


def fallback_rule(rules: Sequence[RedirectRule]) -> RedirectRule:
    return match(DEFAULT, DEFAULT, rules)


def has_fallback(rules: List[RedirectRule]) -> bool:
    return any(r.is_fallback for r in rules)
