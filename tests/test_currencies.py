from loan_manager.data.currencies import policy_for_currency, resolve_currency_policies
from loan_manager.execution.schemas import CurrencyInfo, Subaccount

from conftest import FakeValrClient

INFOS = [
    CurrencyInfo(symbol="ZAR", isActive=True, shortName="ZAR", withdrawalDecimalPlaces=2),
    CurrencyInfo(symbol="BTC", isActive=True, shortName="BTC", withdrawalDecimalPlaces=8),
    CurrencyInfo(symbol="DOGE", isActive=False, shortName="DOGE", withdrawalDecimalPlaces=4),
]


def test_exchange_metadata_drives_increment_and_places():
    p = policy_for_currency("ZAR", INFOS)
    assert (p.min_increment, p.decimal_places, p.source) == ("0.01", 2, "exchange")
    p = policy_for_currency("BTC", INFOS)
    assert (p.min_increment, p.decimal_places) == ("0.00000001", 8)


def test_custom_increment_wins_with_exchange_places():
    p = policy_for_currency("ZAR", INFOS, {"ZAR": "5"})
    assert (p.min_increment, p.decimal_places, p.source) == ("5", 2, "custom")


def test_custom_increment_for_unlisted_currency_uses_its_own_places():
    p = policy_for_currency("SOL", INFOS, {"SOL": "0.001"})
    assert (p.min_increment, p.decimal_places, p.source) == ("0.001", 3, "custom")


def test_unlisted_or_inactive_currency_uses_defaults():
    p = policy_for_currency("USDT", INFOS)
    assert (p.min_increment, p.decimal_places, p.source) == ("0.01", 2, "default")
    p = policy_for_currency("DOGE", INFOS)
    assert (p.min_increment, p.decimal_places, p.source) == ("0.00000001", 8, "fallback")


def test_resolve_falls_back_when_metadata_unavailable(audit, sink):
    client = FakeValrClient(subaccounts=[Subaccount(id="1")], currencies_error=True)
    policies = resolve_currency_policies(client, {"ZAR", "BTC"}, custom_min_increments={"BTC": "0.0001"}, audit=audit)
    assert policies["ZAR"].min_increment == "1"
    assert policies["ZAR"].decimal_places == 1
    assert policies["BTC"].min_increment == "0.0001"
    assert policies["BTC"].decimal_places == 4
    assert len(sink.of_type("currency_info_unavailable")) == 1


def test_resolve_only_active_loan_currencies(audit, sink):
    client = FakeValrClient(subaccounts=[], currencies=INFOS)
    policies = resolve_currency_policies(client, ["ZAR", "XRP", "ZAR"], audit=audit)
    assert sorted(policies) == ["XRP", "ZAR"]
    assert policies["XRP"].min_increment == "0.000001"
    assert [e.payload["currency"] for e in sink.of_type("currency_not_listed")] == ["XRP"]
    assert resolve_currency_policies(client, []) == {}
