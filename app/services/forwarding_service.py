# app/services/forwarding_service.py
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.forwarding_rule import CallForwardingRule, ForwardingCondition


@dataclass
class ForwardTarget:
    rule_id: int
    rule_name: str
    number: str


def active_rules_for(db: Session, extension_id: int) -> List[CallForwardingRule]:
    """Active rules of an extension in creation order."""
    return (
        db.query(CallForwardingRule)
        .filter(
            CallForwardingRule.extension_id == extension_id,
            CallForwardingRule.is_active.is_(True),
        )
        .order_by(CallForwardingRule.created_at.asc(), CallForwardingRule.id.asc())
        .all()
    )


def _matches(rule: CallForwardingRule, trigger: str, observed_rings: Optional[int]) -> bool:
    if rule.condition_type == ForwardingCondition.AFTER_RINGS.value:
        # ring exhaustion is a flavour of no-answer
        if trigger not in (ForwardingCondition.AFTER_RINGS.value, ForwardingCondition.NO_ANSWER.value):
            return False
        if observed_rings is None or rule.ring_count is None:
            return False
        return observed_rings >= rule.ring_count
    return rule.condition_type == trigger


def evaluate_forwarding(
    rules: Iterable[CallForwardingRule],
    trigger: str,
    observed_rings: Optional[int] = None,
) -> Optional[ForwardTarget]:
    """
    Pick at most one forwarding decision for a trigger.

    Pure: scans the given rules in order and returns the first active one
    whose condition matches. Counting rings is the caller's job.
    """
    for rule in rules:
        if not rule.is_active:
            continue
        if _matches(rule, trigger, observed_rings):
            return ForwardTarget(
                rule_id=rule.id,
                rule_name=rule.rule_name,
                number=rule.forward_to_number,
            )
    return None
