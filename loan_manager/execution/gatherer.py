"""Account data gathering (planning regime, fan-out/fan-in).

One task per subaccount fetches balances and open loans. A failure in one
task is caught, audited and turned into an empty snapshot carrying the error;
sibling tasks are never cancelled.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..data.audit import AuditLog
from ..errors import describe_error
from .schemas import Balance, OpenLoan, Subaccount


@dataclass(frozen=True)
class SubaccountSnapshot:
    subaccount: Subaccount
    balances: List[Balance] = field(default_factory=list)
    loans: List[OpenLoan] = field(default_factory=list)
    error: Optional[str] = None

    def available_by_currency(self) -> Dict[str, str]:
        return {b.currency: b.available for b in self.balances}


@dataclass(frozen=True)
class AccountData:
    snapshots: List[SubaccountSnapshot]
    active_currencies: Set[str]


async def _fetch_one(client, subaccount: Subaccount, audit: Optional[AuditLog]) -> SubaccountSnapshot:
    log = audit.bind(subaccount_id=subaccount.id) if audit else None
    try:
        balances = await asyncio.to_thread(client.get_balances, subaccount.id)
        loans = await asyncio.to_thread(client.get_open_loans, subaccount.id)
    except Exception as e:  # pylint: disable=broad-exception-caught
        reason = describe_error(e)
        if log:
            log.warning(
                "subaccount_fetch_failed",
                {"subaccount_label": subaccount.label, "error": reason},
            )
        return SubaccountSnapshot(subaccount=subaccount, error=f"Failed to fetch account data: {reason}")

    if log:
        log.debug(
            "subaccount_fetched",
            {"balance_count": len(balances), "loan_count": len(loans)},
        )
    return SubaccountSnapshot(subaccount=subaccount, balances=balances, loans=loans)


async def gather_account_data(
    client,
    subaccounts: List[Subaccount],
    *,
    audit: Optional[AuditLog] = None,
) -> AccountData:
    snapshots = await asyncio.gather(*[_fetch_one(client, s, audit) for s in subaccounts])
    active = {loan.currency for snap in snapshots for loan in snap.loans}
    if audit:
        audit.info(
            "account_data_gathered",
            {
                "subaccounts": len(snapshots),
                "failed": sum(1 for s in snapshots if s.error),
                "active_currencies": sorted(active),
            },
        )
    return AccountData(snapshots=list(snapshots), active_currencies=active)


__all__ = ["AccountData", "SubaccountSnapshot", "gather_account_data"]
