"""Folds planning and execution output into the caller-facing summary."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..amount import Amount, parse_amount
from ..data.audit import utc_now
from .schemas import ExecutionPlan, ExecutionResult, ExecutionSummary, Subaccount, SubaccountResult


def build_summary(
    *,
    subaccounts: List[Subaccount],
    plan: ExecutionPlan,
    results: List[ExecutionResult],
    duration_ms: int = 0,
    run_id: Optional[str] = None,
    dry_run: bool = False,
) -> ExecutionSummary:
    """An empty plan is a valid, successful run."""
    by_sub: Dict[str, List[ExecutionResult]] = {}
    for r in results:
        by_sub.setdefault(r.planned_increase.subaccount_id, []).append(r)

    planning_errors = plan.planning_errors

    rows: List[SubaccountResult] = []
    global_errors: List[str] = []
    for sub in subaccounts:
        sub_results = by_sub.get(sub.id, [])
        ok = [r for r in sub_results if r.success]

        totals: Dict[str, Amount] = {}
        for r in ok:
            cur = r.planned_increase.currency
            totals[cur] = totals.get(cur, Amount.zero()) + parse_amount(r.planned_increase.increase_amount)

        errors = list(planning_errors.get(sub.id, []))
        errors.extend(r.error or "Unknown error" for r in sub_results if not r.success)
        global_errors.extend(errors)

        rows.append(
            SubaccountResult(
                subaccount_id=sub.id,
                subaccount_label=sub.label,
                processed_loans=len(sub_results),
                increased_loans=len(ok),
                total_amount_increased={c: str(a) for c, a in totals.items()},
                errors=errors,
            )
        )

    return ExecutionSummary(
        run_id=run_id,
        timestamp=utc_now(),
        dry_run=dry_run,
        total_subaccounts=len(subaccounts),
        processed_subaccounts=len(rows),
        total_loans_processed=sum(r.processed_loans for r in rows),
        total_loans_increased=sum(r.increased_loans for r in rows),
        results=rows,
        errors=global_errors,
        duration_ms=duration_ms,
        execution_plan=plan,
        execution_results=list(results),
    )


__all__ = ["build_summary"]
