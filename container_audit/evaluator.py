"""Check evaluator - apply rules to one target's fact bundle."""
import logging
from typing import Callable

from .errors import (
    AuditError, ParseError, TargetNotFound, ToolUnavailable,
    TransportFailure,
)
from .models import CheckResult, Outcome, Target
from .rules import Rule, RuleContext, Verdict

logger = logging.getLogger(__name__)


def error_reason(exc: AuditError) -> str:
    """Reason text for a check whose target could not be inspected."""
    if isinstance(exc, TargetNotFound):
        return str(exc)
    if isinstance(exc, ParseError):
        return f"Parse error: {exc}"
    if isinstance(exc, TransportFailure):
        return f"Transport failure: {exc}"
    if isinstance(exc, ToolUnavailable):
        return f"Tool unavailable: {exc}"
    return f"Inspection failed: {exc}"


def to_result(rule: Rule, target: Target, verdict: Verdict) -> CheckResult:
    credit = verdict.credit if verdict.outcome is not Outcome.SKIP else 0.0
    return CheckResult(
        rule_id=rule.id,
        rule_name=rule.name,
        target=target,
        outcome=verdict.outcome,
        reason=verdict.reason,
        credit=credit,
        details=dict(verdict.details),
    )


def failed_result(rule: Rule, target: Target, reason: str, **details) -> CheckResult:
    return CheckResult(
        rule_id=rule.id,
        rule_name=rule.name,
        target=target,
        outcome=Outcome.FAIL,
        reason=reason,
        credit=0.0,
        details=details,
    )


def fetch_facts(target: Target, fetch: Callable):
    """Fetch a fact bundle; returns (facts, error). Errors are never retried."""
    try:
        return fetch(target), None
    except AuditError as exc:
        logger.info("cannot inspect %s %s: %s", target.kind.value, target.name, exc)
        return None, exc


def evaluate(rules: list, target: Target, facts, error, ctx: RuleContext) -> list:
    """Apply every applicable rule, in catalog order, to one target.

    An inspection error fails every applicable rule for that target; it is
    never dropped from the denominator.
    """
    results = []
    for rule in rules:
        if not rule.applies_to(target):
            continue
        if error is not None:
            results.append(failed_result(rule, target, error_reason(error),
                                         error=error.__class__.__name__))
            continue
        try:
            verdict = rule.check(facts, ctx)
        except ParseError as exc:
            results.append(failed_result(rule, target, f"Parse error: {exc}"))
            continue
        results.append(to_result(rule, target, verdict))
    return results


def evaluate_target(rules: list, target: Target, fetch: Callable, ctx: RuleContext) -> list:
    facts, error = fetch_facts(target, fetch)
    return evaluate(rules, target, facts, error, ctx)
