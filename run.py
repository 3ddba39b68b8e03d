"""Run the VALR loan manager once (local entrypoint).

Defaults come from `.env` / environment; flags override them for this run.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os

from dotenv import load_dotenv

from loan_manager.data.audit import AuditLevel, ConsoleAuditSink
from loan_manager.handler import handle


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="VALR loan manager")
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan and report increases without issuing any loan-increase calls.",
    )
    p.add_argument(
        "--max-loan-ratio",
        default=None,
        help="Override MAX_LOAN_RATIO (share of available balance, 0.0-1.0).",
    )
    p.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "info"),
        choices=[lvl.name for lvl in AuditLevel],
        help="Minimum audit level printed to stdout.",
    )
    p.add_argument("--no-color", action="store_true", help="Disable colored output.")
    p.add_argument("--json", action="store_true", help="Print the full response body as JSON.")
    return p


async def _amain() -> int:
    load_dotenv()
    args = _build_arg_parser().parse_args()

    env = dict(os.environ)
    if args.dry_run:
        env["DRY_RUN"] = "true"
    if args.max_loan_ratio is not None:
        env["MAX_LOAN_RATIO"] = str(args.max_loan_ratio)

    print("[INFO] Starting VALR loan manager")
    print(f"[INFO] DRY_RUN={env.get('DRY_RUN', 'false')} MAX_LOAN_RATIO={env.get('MAX_LOAN_RATIO', '1.0')}")
    print(f"[INFO] VALR_API_KEY={'set' if env.get('VALR_API_KEY') else 'missing'}")

    sink = ConsoleAuditSink(min_level=AuditLevel.parse(args.log_level), color=not args.no_color)
    response = await handle(env=env, sink=sink)

    body = json.loads(response["body"])
    if args.json:
        print(json.dumps(body, indent=2))
    elif body.get("success"):
        s = body["summary"]
        print(
            f"[INFO] subaccounts={s['total_subaccounts']} loans_processed={s['total_loans_processed']} "
            f"loans_increased={s['total_loans_increased']} errors={len(s['errors'])} "
            f"duration_ms={s['duration_ms']}"
        )
        for cur, total in s["execution_plan"]["total_increases_by_currency"].items():
            print(f"[INFO] planned {cur}: +{total}")
    else:
        print(f"[ERROR] {body.get('error')}")
        for d in body.get("details") or []:
            print(f"[ERROR]   - {d}")

    return 0 if response["statusCode"] == 200 else 1


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
