"""Increase planner and execution-plan builder (deterministic, no exchange calls).

`plan_loan_increase` is the per-loan policy; `plan_subaccount` walks one
subaccount's loans; `build_execution_plan` aggregates every subaccount into a
single ordered `ExecutionPlan`.

`max_loan_ratio` caps the share of the *available balance* folded into a
loan; it is never applied to the loan's current amount.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..amount import Amount, min_amount, parse_amount
from ..data.audit import AuditLog
from ..errors import PlanningFailure, describe_error
from .gatherer import AccountData, SubaccountSnapshot
from .schemas import CurrencyPolicy, ExecutionPlan, OpenLoan, PlannedIncrease, RiskLevel, Subaccount

MS_PER_INCREASE = 200
PLAN_OVERHEAD_MS = 500


class SkipReason:
    insufficient_funds = "insufficient_funds"
    increase_too_small = "increase_too_small"
    nothing_after_truncation = "nothing_after_truncation"


@dataclass(frozen=True)
class LoanDecision:
    planned: Optional[PlannedIncrease] = None
    skip_reason: Optional[str] = None
    candidate: Optional[Amount] = None


def plan_loan_increase(
    *,
    subaccount: Subaccount,
    loan: OpenLoan,
    available: Amount,
    policy: CurrencyPolicy,
    max_loan_ratio: float,
) -> LoanDecision:
    min_increment = parse_amount(policy.min_increment, scale=available.scale)

    if available < min_increment:
        return LoanDecision(skip_reason=SkipReason.insufficient_funds)

    candidate = min_amount(available, available.scale_by_ratio(max_loan_ratio))
    if candidate < min_increment:
        return LoanDecision(skip_reason=SkipReason.increase_too_small, candidate=candidate)

    increase = candidate.truncate_to_places(policy.decimal_places)
    if increase.is_zero():
        return LoanDecision(skip_reason=SkipReason.nothing_after_truncation, candidate=candidate)

    current = parse_amount(loan.total_amount, scale=available.scale)
    return LoanDecision(
        planned=PlannedIncrease(
            subaccount_id=subaccount.id,
            subaccount_label=subaccount.label,
            loan_id=loan.loan_id,
            currency=loan.currency,
            current_amount=str(current),
            increase_amount=str(increase),
            new_amount=str(current + increase),
        ),
        candidate=candidate,
    )


@dataclass
class SubaccountPlan:
    subaccount: Subaccount
    increases: List[PlannedIncrease] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def plan_subaccount(
    snapshot: SubaccountSnapshot,
    policies: Dict[str, CurrencyPolicy],
    *,
    max_loan_ratio: float,
    audit: Optional[AuditLog] = None,
) -> SubaccountPlan:
    """Plan every loan of one subaccount; a failing loan is skipped, not fatal.

    Loans sharing a currency draw from one balance: each planned increase is
    deducted before the next loan in that currency is considered.
    """
    sub = snapshot.subaccount
    out = SubaccountPlan(subaccount=sub)
    if snapshot.error:
        out.errors.append(snapshot.error)
    log = audit.bind(subaccount_id=sub.id) if audit else None

    remaining: Dict[str, Amount] = {}
    available_text = snapshot.available_by_currency()

    for loan in snapshot.loans:
        try:
            policy = policies.get(loan.currency)
            if policy is None:
                raise PlanningFailure(f"No currency policy resolved for {loan.currency}")
            if loan.currency not in remaining:
                remaining[loan.currency] = parse_amount(available_text.get(loan.currency, "0"))

            decision = plan_loan_increase(
                subaccount=sub,
                loan=loan,
                available=remaining[loan.currency],
                policy=policy,
                max_loan_ratio=max_loan_ratio,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = describe_error(e)
            out.errors.append(f"Failed to plan increase for loan {loan.loan_id}: {reason}")
            if log:
                log.error("loan_planning_failed", {"loan_id": loan.loan_id, "currency": loan.currency, "error": reason})
            continue

        if decision.planned is None:
            if log:
                log.debug(
                    "loan_increase_skipped",
                    {
                        "loan_id": loan.loan_id,
                        "currency": loan.currency,
                        "reason": decision.skip_reason,
                        "available": str(remaining[loan.currency]),
                        "min_increment": policy.min_increment,
                    },
                )
            continue

        p = decision.planned
        remaining[loan.currency] = remaining[loan.currency] - parse_amount(p.increase_amount)
        out.increases.append(p)
        if log:
            log.info(
                "loan_increase_planned",
                {
                    "loan_id": p.loan_id,
                    "currency": p.currency,
                    "current_amount": p.current_amount,
                    "increase_amount": p.increase_amount,
                    "new_amount": p.new_amount,
                },
            )
    return out


def assess_risk(count: int) -> RiskLevel:
    if count == 0:
        return RiskLevel.none
    if count < 5:
        return RiskLevel.low
    if count < 15:
        return RiskLevel.medium
    return RiskLevel.high


def total_by_currency(increases: List[PlannedIncrease]) -> Dict[str, str]:
    totals: Dict[str, Amount] = {}
    for p in increases:
        totals[p.currency] = totals.get(p.currency, Amount.zero()) + parse_amount(p.increase_amount)
    return {c: str(a) for c, a in totals.items()}


async def _plan_isolated(
    snapshot: SubaccountSnapshot,
    policies: Dict[str, CurrencyPolicy],
    max_loan_ratio: float,
    audit: Optional[AuditLog],
) -> SubaccountPlan:
    try:
        return plan_subaccount(snapshot, policies, max_loan_ratio=max_loan_ratio, audit=audit)
    except Exception as e:  # pylint: disable=broad-exception-caught
        reason = describe_error(e)
        if audit:
            audit.bind(subaccount_id=snapshot.subaccount.id).error("subaccount_planning_failed", {"error": reason})
        return SubaccountPlan(
            subaccount=snapshot.subaccount,
            errors=[f"Failed to plan increases for subaccount {snapshot.subaccount.id}: {reason}"],
        )


async def build_execution_plan(
    data: AccountData,
    policies: Dict[str, CurrencyPolicy],
    *,
    max_loan_ratio: float,
    audit: Optional[AuditLog] = None,
) -> ExecutionPlan:
    """Fan-in barrier: every subaccount settles before the plan is built.

    Increases keep subaccount order (as listed by the exchange) and, within a
    subaccount, loan order.
    """
    sub_plans = await asyncio.gather(
        *[_plan_isolated(s, policies, max_loan_ratio, audit) for s in data.snapshots]
    )

    increases: List[PlannedIncrease] = [p for sp in sub_plans for p in sp.increases]
    plan = ExecutionPlan(
        planned_increases=increases,
        total_increases_by_currency=total_by_currency(increases),
        estimated_execution_time_ms=len(increases) * MS_PER_INCREASE + PLAN_OVERHEAD_MS,
        risk_assessment=assess_risk(len(increases)),
        planning_errors={sp.subaccount.id: list(sp.errors) for sp in sub_plans if sp.errors},
    )
    if audit:
        audit.info(
            "execution_plan_created",
            {
                "total_increases": len(increases),
                "total_increases_by_currency": plan.total_increases_by_currency,
                "estimated_execution_time_ms": plan.estimated_execution_time_ms,
                "risk_assessment": plan.risk_assessment,
            },
        )
    return plan


__all__ = [
    "LoanDecision",
    "SkipReason",
    "SubaccountPlan",
    "assess_risk",
    "build_execution_plan",
    "plan_loan_increase",
    "plan_subaccount",
    "total_by_currency",
]
