"""Per-currency minimum increments and accepted decimal places.

Resolved once per run for the currencies that carry at least one open loan.
Priority: custom config increment, then exchange metadata, then the static
default table, then the generic fallback.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..amount import decimal_places_of
from ..data.audit import AuditLog
from ..errors import describe_error
from ..execution.schemas import CurrencyInfo, CurrencyPolicy, PolicySource

DEFAULT_CURRENCY_INCREMENTS: Dict[str, str] = {
    "ZAR": "1.0",
    "BTC": "0.00001",
    "ETH": "0.0001",
    "USDC": "0.01",
    "USDT": "0.01",
    "XRP": "0.000001",
}

DEFAULT_FALLBACK_INCREMENT = "0.00000001"


def _find_info(currencies: List[CurrencyInfo], currency: str) -> Optional[CurrencyInfo]:
    info = next((c for c in currencies if c.matches(currency)), None)
    if info is None or not info.is_active:
        return None
    return info


def _static_policy(currency: str, custom: Optional[Dict[str, str]]) -> CurrencyPolicy:
    if custom and custom.get(currency):
        increment, source = custom[currency], PolicySource.custom
    elif currency in DEFAULT_CURRENCY_INCREMENTS:
        increment, source = DEFAULT_CURRENCY_INCREMENTS[currency], PolicySource.default
    else:
        increment, source = DEFAULT_FALLBACK_INCREMENT, PolicySource.fallback
    return CurrencyPolicy(
        currency=currency,
        min_increment=increment,
        decimal_places=decimal_places_of(increment),
        source=source,
    )


def policy_for_currency(
    currency: str,
    currencies: List[CurrencyInfo],
    custom: Optional[Dict[str, str]] = None,
) -> CurrencyPolicy:
    info = _find_info(currencies, currency)
    if custom and custom.get(currency):
        increment = custom[currency]
        places = info.withdrawal_decimal_places if info else decimal_places_of(increment)
        return CurrencyPolicy(
            currency=currency, min_increment=increment, decimal_places=places, source=PolicySource.custom
        )
    if info is not None:
        places = info.withdrawal_decimal_places
        increment = "1" if places == 0 else "0." + "0" * (places - 1) + "1"
        return CurrencyPolicy(
            currency=currency, min_increment=increment, decimal_places=places, source=PolicySource.exchange
        )
    return _static_policy(currency, custom)


def resolve_currency_policies(
    client,
    currencies: Iterable[str],
    *,
    custom_min_increments: Optional[Dict[str, str]] = None,
    audit: Optional[AuditLog] = None,
) -> Dict[str, CurrencyPolicy]:
    wanted = sorted(set(currencies))
    if not wanted:
        return {}

    try:
        infos = client.get_currencies()
    except Exception as e:  # pylint: disable=broad-exception-caught
        if audit:
            audit.warning(
                "currency_info_unavailable",
                {"error": describe_error(e), "currencies": wanted},
            )
        return {c: _static_policy(c, custom_min_increments) for c in wanted}

    policies: Dict[str, CurrencyPolicy] = {}
    for c in wanted:
        policy = policy_for_currency(c, infos, custom_min_increments)
        if audit and policy.source in {PolicySource.default.value, PolicySource.fallback.value}:
            audit.warning(
                "currency_not_listed",
                {"currency": c, "fallback": policy.min_increment},
            )
        policies[c] = policy
    return policies


__all__ = [
    "DEFAULT_CURRENCY_INCREMENTS",
    "DEFAULT_FALLBACK_INCREMENT",
    "policy_for_currency",
    "resolve_currency_policies",
]
