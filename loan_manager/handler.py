"""Loan-management entry point.

`run_loan_management` is the two-phase core: gather account data, resolve
currency policies, build the full plan, then execute it sequentially.
`handler` wraps it for a serverless-style invocation and returns
`{statusCode, headers, body}`.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from .config import LoanManagerConfig, load_config
from .data.audit import AuditContext, AuditLog, AuditSink, ConsoleAuditSink
from .data.currencies import resolve_currency_policies
from .errors import ConfigurationError, LoanManagerError, describe_error
from .execution.executor import ExecutorConfig, LoanExecutor
from .execution.gatherer import gather_account_data
from .execution.planner import build_execution_plan
from .execution.reporting import build_summary
from .execution.schemas import ExecutionSummary
from .execution.valr_client import ValrClient
from .validation import validate_environment

INTERNAL_ERROR_MESSAGE = "Internal server error occurred during execution"


def generate_run_id(*, prefix: str = "run") -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{ts}_{uuid4().hex[:8]}"


async def run_loan_management(
    config: LoanManagerConfig,
    *,
    client: Optional[Any] = None,
    audit: Optional[AuditLog] = None,
    run_id: Optional[str] = None,
) -> ExecutionSummary:
    start = time.perf_counter()
    run_id = run_id or generate_run_id()
    log = audit or AuditLog(ConsoleAuditSink(), AuditContext(run_id=run_id))
    owns_client = client is None
    if client is None:
        client = ValrClient.from_credentials(config.credentials, config=config.transport, audit=log)

    try:
        log.info("run_start", {"dry_run": config.dry_run, "max_loan_ratio": config.max_loan_ratio})

        subaccounts = await asyncio.to_thread(client.get_subaccounts)
        log.info("subaccounts_listed", {"count": len(subaccounts)})

        data = await gather_account_data(client, subaccounts, audit=log)
        policies = await asyncio.to_thread(
            resolve_currency_policies,
            client,
            data.active_currencies,
            custom_min_increments=config.custom_min_increments,
            audit=log,
        )
        log.info(
            "currency_policies_resolved",
            {c: {"min_increment": p.min_increment, "decimal_places": p.decimal_places, "source": p.source} for c, p in policies.items()},
        )

        # Phase 1: every increase is computed before anything is mutated.
        plan = await build_execution_plan(data, policies, max_loan_ratio=config.max_loan_ratio, audit=log)

        # Phase 2: strictly sequential mutation.
        executor = LoanExecutor(client=client, config=ExecutorConfig(dry_run=config.dry_run), audit=log)
        results = await executor.execute_plan(plan)

        summary = build_summary(
            subaccounts=subaccounts,
            plan=plan,
            results=results,
            duration_ms=int((time.perf_counter() - start) * 1000),
            run_id=run_id,
            dry_run=config.dry_run,
        )
        log.info(
            "run_complete",
            {
                "duration_ms": summary.duration_ms,
                "processed_subaccounts": summary.processed_subaccounts,
                "total_loans_processed": summary.total_loans_processed,
                "total_loans_increased": summary.total_loans_increased,
                "error_count": len(summary.errors),
            },
        )
        return summary
    finally:
        if owns_client:
            client.close()


def _response(status: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


async def handle(
    *,
    env: Optional[Mapping[str, str]] = None,
    config: Optional[LoanManagerConfig] = None,
    client: Optional[Any] = None,
    sink: Optional[AuditSink] = None,
) -> Dict[str, Any]:
    run_id = generate_run_id()
    log = AuditLog(sink or ConsoleAuditSink(), AuditContext(run_id=run_id))
    log.info("handler_invoked")

    try:
        if config is None:
            validation = validate_environment(env)
            for w in validation.warnings:
                log.warning("configuration_warning", {"warning": w})
            if not validation.is_valid:
                log.error("configuration_invalid", {"errors": validation.errors})
                return _response(
                    400,
                    {"success": False, "error": "Configuration validation failed", "details": validation.errors},
                )
            try:
                config = load_config(env)
            except ConfigurationError as e:
                log.error("configuration_invalid", {"errors": [str(e)]})
                return _response(
                    400,
                    {"success": False, "error": "Configuration validation failed", "details": [str(e)]},
                )

        summary = await run_loan_management(config, client=client, audit=log, run_id=run_id)
        return _response(200, {"success": True, "summary": summary.model_dump(mode="json")})
    except Exception as e:  # pylint: disable=broad-exception-caught
        payload: Dict[str, Any] = {"error_type": type(e).__name__}
        if isinstance(e, LoanManagerError):
            payload["error"] = describe_error(e)
        log.error("run_failed", payload)
        return _response(500, {"success": False, "error": INTERNAL_ERROR_MESSAGE})


def handler(event: Any = None, context: Any = None) -> Dict[str, Any]:
    """Synchronous invocation entry point; `event` and `context` are unused."""
    return asyncio.run(handle())


__all__ = ["generate_run_id", "handle", "handler", "run_loan_management"]
