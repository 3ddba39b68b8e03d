"""Sequential loan-increase executor.

Drains an `ExecutionPlan` strictly in plan order with one mutating request in
flight at a time. Each planned increase moves planned -> executing ->
succeeded | failed; a failure is recorded in its `ExecutionResult` and the
queue continues. Pacing is left to the transport's rate-limit handling.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional

from ..data.audit import AuditLog, utc_now
from ..errors import ExecutionFailure, describe_error
from .schemas import ExecutionPlan, ExecutionResult, ExecutionStatus, PlannedIncrease


@dataclass(frozen=True)
class ExecutorConfig:
    dry_run: bool = False


class LoanExecutor:
    def __init__(
        self,
        *,
        client,
        config: Optional[ExecutorConfig] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.client = client
        self.config = config or ExecutorConfig()
        self.audit = audit

    def _log(self, level: str, event_type: str, p: PlannedIncrease, **extra) -> None:
        if not self.audit:
            return
        payload = {"loan_id": p.loan_id, "currency": p.currency, **extra}
        getattr(self.audit.bind(subaccount_id=p.subaccount_id), level)(event_type, payload)

    async def execute_one(self, p: PlannedIncrease) -> ExecutionResult:
        start = time.perf_counter()
        self._log(
            "info",
            "loan_increase_executing",
            p,
            status=ExecutionStatus.executing.value,
            current_amount=p.current_amount,
            increase_amount=p.increase_amount,
            new_amount=p.new_amount,
        )

        if self.config.dry_run:
            self._log("info", "loan_increase_dry_run", p, new_amount=p.new_amount)
            return ExecutionResult(
                planned_increase=p,
                status=ExecutionStatus.succeeded,
                success=True,
                dry_run=True,
                executed_at=utc_now(),
                duration_ms=int((time.perf_counter() - start) * 1000),
            )

        try:
            await asyncio.to_thread(
                self.client.increase_loan,
                p.subaccount_id,
                loan_id=p.loan_id,
                currency=p.currency,
                increase_by=p.increase_amount,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = describe_error(e)
            err = ExecutionFailure(f"Failed to execute increase for loan {p.loan_id}: {reason}")
            self._log("error", "loan_increase_failed", p, error=reason)
            return ExecutionResult(
                planned_increase=p,
                status=ExecutionStatus.failed,
                success=False,
                error=str(err),
                executed_at=utc_now(),
                duration_ms=int((time.perf_counter() - start) * 1000),
            )

        self._log("info", "loan_increase_succeeded", p, new_amount=p.new_amount)
        return ExecutionResult(
            planned_increase=p,
            status=ExecutionStatus.succeeded,
            success=True,
            executed_at=utc_now(),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

    async def execute_plan(self, plan: ExecutionPlan) -> List[ExecutionResult]:
        total = len(plan.planned_increases)
        if self.audit:
            self.audit.info(
                "execution_start",
                {
                    "total_increases": total,
                    "estimated_time_ms": plan.estimated_execution_time_ms,
                    "dry_run": self.config.dry_run,
                },
            )

        results: List[ExecutionResult] = []
        for i, p in enumerate(plan.planned_increases):
            result = await self.execute_one(p)
            results.append(result)
            if not result.success:
                self._log(
                    "warning",
                    "loan_increase_continuing",
                    p,
                    error=result.error,
                    remaining=total - i - 1,
                )

        if self.audit:
            ok = sum(1 for r in results if r.success)
            self.audit.info(
                "execution_complete",
                {
                    "total_executed": len(results),
                    "success_count": ok,
                    "failure_count": len(results) - ok,
                    "success_rate_pct": round(100 * ok / len(results)) if results else 100,
                },
            )
        return results


__all__ = ["ExecutorConfig", "LoanExecutor"]
